import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

import booking_ledger
from booking_ledger import rollback_on_error
from grading import member_scores, resolve_criteria, validate_criteria
from models import (
    LIVE_SLOT_STATUSES,
    ParticipationType,
    PresentationEvent,
    PresentationLog,
    PresentationSlot,
    PresentationSlotParticipant,
    SlotStatus,
)
from presentation_errors import (
    Conflict,
    DuplicateParticipant,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from schemas import (
    CallerContext,
    GradeSubmission,
    GradingCriterion,
    PresentationEventCreate,
    PresentationEventResponse,
    PresentationEventUpdate,
    PresentationLogResponse,
    PresentationSlotResponse,
    RoleEnum,
    SlotBookingRequest,
    SlotConfig,
    SlotPreviewResponse,
    TargetAudience,
    TimeWindow,
)
from slot_generator import generate_event_slots, preview_slot_times, slot_config_errors
from time_utils import ensure_timezone, now_tz, within_window
from utils import log_presentation_action, normalize_email, normalize_text

logger = logging.getLogger(__name__)

EVENT_MANAGER_ROLES = (RoleEnum.FACULTY, RoleEnum.ADMIN)


# Payload and caller helpers

def _coerce_payload(payload, model):
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = {
            ".".join(str(part) for part in err["loc"]) or "payload": err["msg"]
            for err in exc.errors()
        }
        raise ValidationError("Invalid request payload", errors) from None


def _caller(caller) -> CallerContext:
    return _coerce_payload(caller, CallerContext)


def _is_admin(caller: CallerContext) -> bool:
    return caller.role == RoleEnum.ADMIN


def _is_host(caller: CallerContext, event: PresentationEvent) -> bool:
    return caller.role == RoleEnum.FACULTY and str(event.host_user_id) == str(caller.user_id)


def _require_event_manager(caller: CallerContext) -> None:
    if caller.role not in EVENT_MANAGER_ROLES:
        raise PermissionDenied("Only faculty or admins can manage presentation events")


def _require_host_or_admin(caller: CallerContext, event: PresentationEvent) -> None:
    if _is_admin(caller) or _is_host(caller, event):
        return
    raise PermissionDenied("Only the event host or an admin can do this")


def _get_event_or_404(db: Session, event_id: int) -> PresentationEvent:
    event = db.query(PresentationEvent).filter(PresentationEvent.id == event_id).first()
    if not event:
        raise NotFound("Presentation event not found")
    return event


def audience_matches(event: PresentationEvent, caller: CallerContext) -> bool:
    """An empty target list leaves that dimension open to everyone."""
    years = [int(year) for year in (event.target_years or [])]
    if years and (caller.year is None or int(caller.year) not in years):
        return False
    schools = list(event.target_schools or [])
    if schools and caller.school not in schools:
        return False
    departments = list(event.target_departments or [])
    if departments and caller.department not in departments:
        return False
    return True


# Response builders

def _event_criteria(event: PresentationEvent) -> List[Dict[str, object]]:
    return resolve_criteria(event.custom_grading_criteria, event.grading_criteria)


def _slot_response(slot: PresentationSlot, criteria) -> PresentationSlotResponse:
    response = PresentationSlotResponse.model_validate(slot)
    if slot.individual_grades:
        response.member_scores = member_scores(
            [participant.email for participant in slot.participants],
            slot.individual_grades,
            criteria,
        )
    return response


def _event_response(event: PresentationEvent, slots: Optional[List[PresentationSlot]] = None) -> PresentationEventResponse:
    criteria = _event_criteria(event)
    all_slots = list(event.slots)
    shown = all_slots if slots is None else slots
    return PresentationEventResponse(
        id=event.id,
        title=event.title,
        description=event.description,
        venue=event.venue,
        host_user_id=event.host_user_id,
        host_name=event.host_name,
        host_email=event.host_email,
        host_department=event.host_department,
        participation_type=event.participation_type,
        team_size_min=event.team_size_min,
        team_size_max=event.team_size_max,
        registration_window=TimeWindow(
            start=ensure_timezone(event.registration_start),
            end=ensure_timezone(event.registration_end),
        ),
        presentation_window=TimeWindow(
            start=ensure_timezone(event.presentation_start),
            end=ensure_timezone(event.presentation_end),
        ),
        slot_config=SlotConfig(
            duration_minutes=event.slot_duration_minutes,
            buffer_minutes=event.slot_buffer_minutes,
            daily_start_time=event.daily_start_time,
            daily_end_time=event.daily_end_time,
        ),
        target_audience=TargetAudience(
            years=event.target_years or [],
            schools=event.target_schools or [],
            departments=event.target_departments or [],
        ),
        custom_grading_criteria=bool(event.custom_grading_criteria),
        grading_criteria=[GradingCriterion(name=item["name"], weight=item["weight"]) for item in criteria],
        slots=[_slot_response(slot, criteria) for slot in shown],
        slot_count=len(all_slots),
        available_slot_count=sum(1 for slot in all_slots if slot.status == SlotStatus.AVAILABLE),
    )


# Validation

def _window_errors(window: Optional[TimeWindow], field: str) -> Dict[str, str]:
    if window is None:
        return {}
    if ensure_timezone(window.start) >= ensure_timezone(window.end):
        return {f"{field}.end": "End must be after start"}
    return {}


def _team_size_errors(participation_type, team_size_min: int, team_size_max: int) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    if participation_type != ParticipationType.TEAM.value:
        return errors
    if team_size_min <= 0:
        errors["team_size_min"] = "Minimum team size must be positive"
    if team_size_max < team_size_min:
        errors["team_size_max"] = "Maximum team size must be greater than or equal to minimum"
    return errors


def _slot_errors(slot_config: SlotConfig, window: TimeWindow) -> Dict[str, str]:
    errors = slot_config_errors(
        slot_config.duration_minutes,
        slot_config.buffer_minutes,
        slot_config.daily_start_time,
        slot_config.daily_end_time,
    )
    if errors or _window_errors(window, "presentation_window"):
        return errors
    if not generate_event_slots(slot_config, window):
        errors["slot_config"] = "No slot fits inside the presentation window with this configuration"
    return errors


def validate_event_payload(payload: PresentationEventCreate) -> Dict[str, str]:
    """Collect every problem with an event definition instead of stopping at the first."""
    errors: Dict[str, str] = {}
    if not normalize_text(payload.title):
        errors["title"] = "Title is required"
    if not normalize_text(payload.venue):
        errors["venue"] = "Venue is required"
    errors.update(_team_size_errors(payload.participation_type.value, payload.team_size_min, payload.team_size_max))
    errors.update(_window_errors(payload.registration_window, "registration_window"))
    errors.update(_window_errors(payload.presentation_window, "presentation_window"))
    errors.update(validate_criteria(payload.grading_criteria, payload.custom_grading_criteria))
    errors.update(_slot_errors(payload.slot_config, payload.presentation_window))
    return errors


def _build_slots(event: PresentationEvent, slot_config: SlotConfig, window: TimeWindow) -> List[PresentationSlot]:
    return [
        PresentationSlot(
            event_id=event.id,
            start_time=candidate.start,
            end_time=candidate.end,
            status=SlotStatus.AVAILABLE,
            version=0,
        )
        for candidate in generate_event_slots(slot_config, window)
    ]


# Event operations

def preview_slots(slot_config, presentation_window=None) -> SlotPreviewResponse:
    config = _coerce_payload(slot_config, SlotConfig)
    labels = preview_slot_times(
        config.duration_minutes,
        config.buffer_minutes,
        config.daily_start_time,
        config.daily_end_time,
    )
    total = len(labels)
    if presentation_window is not None:
        total = len(generate_event_slots(config, _coerce_payload(presentation_window, TimeWindow)))
    return SlotPreviewResponse(slot_times=labels, slots_per_day=len(labels), total_slots=total)


@rollback_on_error
def create_event(db: Session, caller, payload) -> PresentationEventResponse:
    caller = _caller(caller)
    _require_event_manager(caller)
    payload = _coerce_payload(payload, PresentationEventCreate)
    errors = validate_event_payload(payload)
    if errors:
        raise ValidationError("Please fix the errors in the event definition", errors)

    is_team = payload.participation_type.value == ParticipationType.TEAM.value
    event = PresentationEvent(
        title=payload.title.strip(),
        description=normalize_text(payload.description),
        venue=payload.venue.strip(),
        host_user_id=str(caller.user_id),
        host_name=caller.name,
        host_email=caller.email,
        host_department=caller.department,
        participation_type=ParticipationType(payload.participation_type.value),
        team_size_min=payload.team_size_min if is_team else 1,
        team_size_max=payload.team_size_max if is_team else 1,
        registration_start=ensure_timezone(payload.registration_window.start),
        registration_end=ensure_timezone(payload.registration_window.end),
        presentation_start=ensure_timezone(payload.presentation_window.start),
        presentation_end=ensure_timezone(payload.presentation_window.end),
        slot_duration_minutes=payload.slot_config.duration_minutes,
        slot_buffer_minutes=payload.slot_config.buffer_minutes,
        daily_start_time=payload.slot_config.daily_start_time,
        daily_end_time=payload.slot_config.daily_end_time,
        target_years=list(payload.target_audience.years),
        target_schools=list(payload.target_audience.schools),
        target_departments=list(payload.target_audience.departments),
        custom_grading_criteria=payload.custom_grading_criteria,
        grading_criteria=(
            [item.model_dump() for item in payload.grading_criteria]
            if payload.custom_grading_criteria else None
        ),
    )
    db.add(event)
    db.flush()
    event.slots = _build_slots(event, payload.slot_config, payload.presentation_window)
    log_presentation_action(
        db,
        caller,
        "create_presentation_event",
        event_id=event.id,
        meta={"title": event.title, "slot_count": len(event.slots)},
        commit=False,
    )
    db.commit()
    db.refresh(event)
    return _event_response(event)


def get_event(db: Session, event_id: int) -> PresentationEventResponse:
    return _event_response(_get_event_or_404(db, event_id))


def list_available(db: Session, caller, *, now: Optional[datetime] = None) -> List[PresentationEventResponse]:
    caller = _caller(caller)
    moment = ensure_timezone(now) if now is not None else now_tz()
    events = db.query(PresentationEvent).order_by(PresentationEvent.id.asc()).all()
    results = []
    for event in events:
        if not within_window(moment, event.registration_start, event.registration_end):
            continue
        if not audience_matches(event, caller):
            continue
        open_slots = [slot for slot in event.slots if slot.status == SlotStatus.AVAILABLE]
        results.append(_event_response(event, open_slots))
    return results


def list_host_events(db: Session, caller) -> List[PresentationEventResponse]:
    caller = _caller(caller)
    _require_event_manager(caller)
    query = db.query(PresentationEvent)
    if not _is_admin(caller):
        query = query.filter(PresentationEvent.host_user_id == str(caller.user_id))
    return [_event_response(event) for event in query.order_by(PresentationEvent.id.asc()).all()]


def list_my_bookings(db: Session, caller) -> List[PresentationSlotResponse]:
    caller = _caller(caller)
    slots = (
        db.query(PresentationSlot)
        .join(PresentationSlotParticipant, PresentationSlotParticipant.slot_id == PresentationSlot.id)
        .filter(PresentationSlotParticipant.email == normalize_email(caller.email))
        .filter(PresentationSlot.status.in_(LIVE_SLOT_STATUSES))
        .order_by(PresentationSlot.start_time.asc())
        .all()
    )
    return [_slot_response(slot, _event_criteria(slot.event)) for slot in slots]


def get_slot_detail(db: Session, slot_id: int) -> PresentationSlotResponse:
    slot = booking_ledger.get_slot_or_404(db, slot_id)
    return _slot_response(slot, _event_criteria(slot.event))


def _lock_event_slots(db: Session, event_id: int) -> List[PresentationSlot]:
    return (
        db.query(PresentationSlot)
        .filter(PresentationSlot.event_id == event_id)
        .order_by(PresentationSlot.id.asc())
        .with_for_update()
        .populate_existing()
        .all()
    )


def _delete_slots(db: Session, slot_ids: List[int], statuses) -> None:
    """Delete exactly ``slot_ids``, each of which must still be in one of ``statuses``."""
    if not slot_ids:
        return
    db.query(PresentationSlotParticipant).filter(
        PresentationSlotParticipant.slot_id.in_(slot_ids)
    ).delete(synchronize_session="fetch")
    deleted = (
        db.query(PresentationSlot)
        .filter(PresentationSlot.id.in_(slot_ids), PresentationSlot.status.in_(statuses))
        .delete(synchronize_session="fetch")
    )
    if deleted != len(slot_ids):
        db.rollback()
        logger.warning("Slots of event changed underneath a bulk delete (%s of %s matched)", deleted, len(slot_ids))
        raise Conflict("Slots changed while the event was being modified; reload and retry")


@rollback_on_error
def update_event(db: Session, caller, event_id: int, payload) -> PresentationEventResponse:
    caller = _caller(caller)
    event = _get_event_or_404(db, event_id)
    _require_host_or_admin(caller, event)
    payload = _coerce_payload(payload, PresentationEventUpdate)
    updates = payload.model_dump(exclude_unset=True)

    slots = _lock_event_slots(db, event.id)
    statuses = {slot.status for slot in slots}
    errors: Dict[str, str] = {}
    if "title" in updates and not normalize_text(payload.title):
        errors["title"] = "Title is required"
    if "venue" in updates and not normalize_text(payload.venue):
        errors["venue"] = "Venue is required"
    errors.update(_window_errors(payload.registration_window, "registration_window"))

    reslot = "slot_config" in updates or "presentation_window" in updates
    slot_config = payload.slot_config or SlotConfig(
        duration_minutes=event.slot_duration_minutes,
        buffer_minutes=event.slot_buffer_minutes,
        daily_start_time=event.daily_start_time,
        daily_end_time=event.daily_end_time,
    )
    window = payload.presentation_window or TimeWindow(
        start=ensure_timezone(event.presentation_start),
        end=ensure_timezone(event.presentation_end),
    )
    if reslot:
        if statuses - {SlotStatus.AVAILABLE}:
            raise InvalidTransition("Slots cannot be regenerated once any slot has been booked")
        errors.update(_window_errors(payload.presentation_window, "presentation_window"))
        errors.update(_slot_errors(slot_config, window))

    regrade = "custom_grading_criteria" in updates or "grading_criteria" in updates
    custom = event.custom_grading_criteria if payload.custom_grading_criteria is None else payload.custom_grading_criteria
    criteria = payload.grading_criteria if "grading_criteria" in updates else event.grading_criteria
    if regrade:
        if SlotStatus.COMPLETED in statuses:
            raise InvalidTransition("Grading criteria cannot change once a presentation has been graded")
        errors.update(validate_criteria(criteria, custom))

    if errors:
        raise ValidationError("Please fix the errors in the event update", errors)

    if "title" in updates:
        event.title = payload.title.strip()
    if "venue" in updates:
        event.venue = payload.venue.strip()
    if "description" in updates:
        event.description = normalize_text(payload.description)
    if payload.registration_window is not None:
        event.registration_start = ensure_timezone(payload.registration_window.start)
        event.registration_end = ensure_timezone(payload.registration_window.end)
    if payload.target_audience is not None:
        event.target_years = list(payload.target_audience.years)
        event.target_schools = list(payload.target_audience.schools)
        event.target_departments = list(payload.target_audience.departments)
    if regrade:
        event.custom_grading_criteria = bool(custom)
        event.grading_criteria = (
            [{"name": item["name"], "weight": item["weight"]} for item in resolve_criteria(True, criteria)]
            if custom else None
        )
    if reslot:
        event.presentation_start = ensure_timezone(window.start)
        event.presentation_end = ensure_timezone(window.end)
        event.slot_duration_minutes = slot_config.duration_minutes
        event.slot_buffer_minutes = slot_config.buffer_minutes
        event.daily_start_time = slot_config.daily_start_time
        event.daily_end_time = slot_config.daily_end_time
        _delete_slots(db, [slot.id for slot in slots], (SlotStatus.AVAILABLE,))
        db.expire(event, ["slots"])
        db.add_all(_build_slots(event, slot_config, window))

    log_presentation_action(
        db,
        caller,
        "update_presentation_event",
        event_id=event.id,
        meta={"fields": sorted(updates.keys()), "regenerated_slots": reslot},
        commit=False,
    )
    db.commit()
    db.refresh(event)
    return _event_response(event)


@rollback_on_error
def delete_event(db: Session, caller, event_id: int, *, force: bool = False) -> dict:
    caller = _caller(caller)
    event = _get_event_or_404(db, event_id)
    _require_host_or_admin(caller, event)

    slots = _lock_event_slots(db, event.id)
    active = [
        slot.id for slot in slots
        if slot.status in (SlotStatus.IN_PROGRESS, SlotStatus.COMPLETED)
    ]
    if active and not force:
        raise InvalidTransition(
            "Event has presentations in progress or graded; pass force=True to delete it anyway",
            {"slots": ", ".join(str(slot_id) for slot_id in active)},
        )

    if active:
        logger.warning("Force deleting presentation event %s with active slots %s", event.id, active)
    title = event.title
    statuses = tuple(SlotStatus) if force else (SlotStatus.AVAILABLE, SlotStatus.BOOKED)
    _delete_slots(db, [slot.id for slot in slots], statuses)
    db.query(PresentationEvent).filter(PresentationEvent.id == event.id).delete(synchronize_session="fetch")
    log_presentation_action(
        db,
        caller,
        "delete_presentation_event",
        event_id=event_id,
        meta={"title": title, "forced": bool(active)},
        commit=False,
    )
    db.commit()
    return {"message": "Presentation event deleted"}


def list_event_logs(db: Session, caller, event_id: int) -> List[PresentationLogResponse]:
    caller = _caller(caller)
    event = _get_event_or_404(db, event_id)
    _require_host_or_admin(caller, event)
    rows = (
        db.query(PresentationLog)
        .filter(PresentationLog.event_id == event.id)
        .order_by(PresentationLog.id.asc())
        .all()
    )
    return [PresentationLogResponse.model_validate(row) for row in rows]


# Slot operations

@rollback_on_error
def book(
    db: Session,
    caller,
    event_id: int,
    slot_id: int,
    participants,
    topic: str,
    team_name: Optional[str] = None,
    *,
    attachment_ref: Optional[str] = None,
    expected_version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PresentationSlotResponse:
    caller = _caller(caller)
    event = _get_event_or_404(db, event_id)
    slot = booking_ledger.get_slot_or_404(db, slot_id)
    if slot.event_id != event.id:
        raise NotFound("Presentation slot not found in this event")
    if not _is_admin(caller) and not audience_matches(event, caller):
        raise PermissionDenied("This presentation is not open to your year, school or department")
    request = _coerce_payload(
        {
            "participants": list(participants or []),
            "topic": topic,
            "team_name": team_name,
            "attachment_ref": attachment_ref,
        },
        SlotBookingRequest,
    )

    emails = [normalize_email(participant.email) for participant in request.participants]
    if not _is_admin(caller) and normalize_email(caller.email) not in emails:
        raise PermissionDenied("You can only book a slot for a team you are part of")

    # Advisory; the unique participant index is what actually enforces it.
    holders = booking_ledger.find_live_participants(db, emails)
    if holders:
        raise DuplicateParticipant(
            "Participant already holds a presentation booking",
            {
                f"participants.{row.email}": f"Already booked in event {row.event_id}, slot {row.slot_id}"
                for row in holders
            },
        )

    slot = booking_ledger.book_slot(
        db,
        slot_id,
        request.participants,
        request.topic,
        request.team_name,
        attachment_ref=request.attachment_ref,
        booked_by=caller,
        expected_version=expected_version,
        now=now,
    )
    log_presentation_action(
        db,
        caller,
        "book_presentation_slot",
        event_id=event.id,
        slot_id=slot.id,
        meta={"participants": [participant.email for participant in slot.participants]},
    )
    return _slot_response(slot, _event_criteria(event))


@rollback_on_error
def cancel(
    db: Session,
    caller,
    slot_id: int,
    *,
    expected_version: Optional[int] = None,
) -> PresentationSlotResponse:
    caller = _caller(caller)
    slot = booking_ledger.get_slot_or_404(db, slot_id)
    if slot.status == SlotStatus.BOOKED and not _is_admin(caller):
        lead_email = slot.participants[0].email if slot.participants else None
        is_owner = (
            (slot.booked_by_user_id is not None and str(slot.booked_by_user_id) == str(caller.user_id))
            or (lead_email is not None and lead_email == caller.email)
        )
        if not is_owner:
            raise PermissionDenied("Not authorized to cancel this booking")

    event_id = slot.event_id
    slot = booking_ledger.cancel_booking(db, slot_id, expected_version=expected_version)
    log_presentation_action(db, caller, "cancel_presentation_booking", event_id=event_id, slot_id=slot.id)
    return _slot_response(slot, _event_criteria(slot.event))


@rollback_on_error
def start(
    db: Session,
    caller,
    slot_id: int,
    *,
    expected_version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PresentationSlotResponse:
    caller = _caller(caller)
    slot = booking_ledger.get_slot_or_404(db, slot_id)
    _require_host_or_admin(caller, slot.event)
    slot = booking_ledger.start_slot(db, slot_id, expected_version=expected_version, now=now)
    log_presentation_action(db, caller, "start_presentation", event_id=slot.event_id, slot_id=slot.id)
    return _slot_response(slot, _event_criteria(slot.event))


@rollback_on_error
def grade(
    db: Session,
    caller,
    slot_id: int,
    grades,
    individual_grades=None,
    feedback: Optional[str] = None,
    *,
    expected_version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PresentationSlotResponse:
    caller = _caller(caller)
    slot = booking_ledger.get_slot_or_404(db, slot_id)
    _require_host_or_admin(caller, slot.event)
    sheet = _coerce_payload(
        {"grades": grades, "individual_grades": individual_grades, "feedback": feedback},
        GradeSubmission,
    )
    slot = booking_ledger.submit_grades(
        db,
        slot_id,
        sheet.grades,
        sheet.individual_grades,
        sheet.feedback,
        expected_version=expected_version,
        now=now,
    )
    log_presentation_action(
        db,
        caller,
        "grade_presentation",
        event_id=slot.event_id,
        slot_id=slot.id,
        meta={"total_score": slot.total_score},
    )
    return _slot_response(slot, _event_criteria(slot.event))
