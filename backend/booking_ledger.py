"""Slot lifecycle state machine.

    available --book--> booked --start--> in-progress --grade--> completed
        ^                  |
        +-----cancel-------+

Every transition is a conditional UPDATE on ``(id, version, status)``; a
caller that read the slot before a concurrent writer committed matches zero
rows and gets :class:`Conflict`. Participant rows carry a globally unique
email, so the database itself refuses a second live booking for the same
person even when two requests race past the advisory pre-check.
"""

import logging
from datetime import datetime
from functools import wraps
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from grading import resolve_criteria, team_score, validate_grade_sheet
from models import (
    LIVE_SLOT_STATUSES,
    ParticipationType,
    PresentationEvent,
    PresentationSlot,
    PresentationSlotParticipant,
    SlotStatus,
)
from presentation_errors import (
    CapacityViolation,
    Conflict,
    DuplicateParticipant,
    InvalidTransition,
    NotFound,
    PresentationError,
    ValidationError,
    WindowClosed,
)
from time_utils import ensure_timezone, now_tz, within_window
from utils import normalize_email, normalize_text

logger = logging.getLogger(__name__)

_CLEARED_BINDING = {
    "topic": None,
    "team_name": None,
    "attachment_ref": None,
    "booked_by_user_id": None,
    "booked_by_email": None,
    "booked_at": None,
    "started_at": None,
    "completed_at": None,
    "grades": None,
    "individual_grades": None,
    "total_score": None,
    "feedback": None,
}


def rollback_on_error(func):
    """Roll the session back when a wrapped operation rejects a request.

    Releases the row locks taken by locked reads before the error reaches
    the caller. The session must be the first positional argument.
    """

    @wraps(func)
    def wrapper(db, *args, **kwargs):
        try:
            return func(db, *args, **kwargs)
        except PresentationError:
            db.rollback()
            raise

    return wrapper


def _now(now: Optional[datetime]) -> datetime:
    return ensure_timezone(now) if now is not None else now_tz()


def get_slot_or_404(db: Session, slot_id: int, *, lock: bool = False) -> PresentationSlot:
    query = db.query(PresentationSlot).filter(PresentationSlot.id == slot_id)
    if lock:
        query = query.with_for_update().populate_existing()
    slot = query.first()
    if not slot:
        raise NotFound("Presentation slot not found")
    return slot


def find_live_participants(db: Session, emails: Iterable[str]) -> List[PresentationSlotParticipant]:
    normalized = sorted({normalize_email(email) for email in emails if normalize_email(email)})
    if not normalized:
        return []
    return (
        db.query(PresentationSlotParticipant)
        .join(PresentationSlot, PresentationSlot.id == PresentationSlotParticipant.slot_id)
        .filter(PresentationSlotParticipant.email.in_(normalized))
        .filter(PresentationSlot.status.in_(LIVE_SLOT_STATUSES))
        .all()
    )


def team_size_bounds(event: PresentationEvent) -> Tuple[int, int]:
    if event.participation_type == ParticipationType.TEAM:
        return int(event.team_size_min), int(event.team_size_max)
    return 1, 1


def _participant_field(participant, field: str):
    if isinstance(participant, Mapping):
        return participant.get(field)
    return getattr(participant, field, None)


def normalize_participants(participants) -> List[Dict[str, Optional[str]]]:
    rows = []
    errors: Dict[str, str] = {}
    for index, participant in enumerate(participants or []):
        email = normalize_email(_participant_field(participant, "email"))
        name = normalize_text(_participant_field(participant, "name"))
        if not email:
            errors[f"participants.{index}.email"] = "Email is required"
        if not name:
            errors[f"participants.{index}.name"] = "Name is required"
        rows.append({
            "email": email,
            "name": name,
            "roll_number": normalize_text(_participant_field(participant, "roll_number")),
        })
    if errors:
        raise ValidationError("Invalid participant details", errors)
    return rows


def _check_version(slot: PresentationSlot, expected_version: Optional[int]) -> None:
    if expected_version is not None and int(expected_version) != int(slot.version):
        raise Conflict("Slot has changed since it was read; reload and retry")


def _transition(db: Session, slot: PresentationSlot, from_status: SlotStatus, values: dict) -> None:
    payload = dict(values)
    payload["version"] = int(slot.version) + 1
    updated = (
        db.query(PresentationSlot)
        .filter(
            PresentationSlot.id == slot.id,
            PresentationSlot.version == slot.version,
            PresentationSlot.status == from_status,
        )
        .update(payload, synchronize_session=False)
    )
    if updated != 1:
        db.rollback()
        logger.warning("Lost concurrent claim on slot %s (version %s)", slot.id, slot.version)
        raise Conflict("Slot was modified by another request; reload and retry")


@rollback_on_error
def book_slot(
    db: Session,
    slot_id: int,
    participants,
    topic: str,
    team_name: Optional[str] = None,
    *,
    attachment_ref: Optional[str] = None,
    booked_by=None,
    expected_version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PresentationSlot:
    moment = _now(now)
    slot = get_slot_or_404(db, slot_id, lock=True)
    event = slot.event
    _check_version(slot, expected_version)

    if slot.status != SlotStatus.AVAILABLE:
        raise InvalidTransition("This presentation slot is not available for booking")
    if not within_window(moment, event.registration_start, event.registration_end):
        raise WindowClosed("Registration for this presentation is not open")

    rows = normalize_participants(participants)
    minimum, maximum = team_size_bounds(event)
    if len(rows) < minimum or len(rows) > maximum:
        if minimum == maximum:
            raise CapacityViolation(f"Exactly {minimum} participant(s) required")
        raise CapacityViolation(f"Team size must be between {minimum} and {maximum} members")

    emails = [row["email"] for row in rows]
    repeated = sorted({email for email in emails if emails.count(email) > 1})
    if repeated:
        raise DuplicateParticipant(
            "Participants must be distinct",
            {f"participants.{email}": "Listed more than once" for email in repeated},
        )

    clean_topic = normalize_text(topic)
    if not clean_topic:
        raise ValidationError("Invalid booking", {"topic": "Topic is required"})

    holders = find_live_participants(db, emails)
    if holders:
        raise DuplicateParticipant(
            "Participant already holds a presentation booking",
            {f"participants.{row.email}": f"Already booked in slot {row.slot_id}" for row in holders},
        )

    _transition(db, slot, SlotStatus.AVAILABLE, {
        "status": SlotStatus.BOOKED,
        "topic": clean_topic,
        "team_name": normalize_text(team_name) if event.participation_type == ParticipationType.TEAM else None,
        "attachment_ref": normalize_text(attachment_ref),
        "booked_by_user_id": getattr(booked_by, "user_id", None),
        "booked_by_email": getattr(booked_by, "email", None) or emails[0],
        "booked_at": moment,
    })
    for position, row in enumerate(rows):
        db.add(PresentationSlotParticipant(
            slot_id=slot.id,
            event_id=slot.event_id,
            position=position,
            email=row["email"],
            name=row["name"],
            roll_number=row["roll_number"],
        ))
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Participant uniqueness race while booking slot %s", slot_id)
        raise Conflict("A participant was booked by another request; reload and retry") from exc

    db.refresh(slot)
    logger.info("Slot %s booked for %s", slot.id, ", ".join(emails))
    return slot


@rollback_on_error
def cancel_booking(
    db: Session,
    slot_id: int,
    *,
    expected_version: Optional[int] = None,
) -> PresentationSlot:
    slot = get_slot_or_404(db, slot_id, lock=True)
    _check_version(slot, expected_version)
    if slot.status != SlotStatus.BOOKED:
        raise InvalidTransition("Only a booked slot that has not started can be cancelled")

    _transition(db, slot, SlotStatus.BOOKED, dict(_CLEARED_BINDING, status=SlotStatus.AVAILABLE))
    for participant in list(slot.participants):
        db.delete(participant)
    db.commit()
    db.refresh(slot)
    logger.info("Booking on slot %s cancelled", slot.id)
    return slot


@rollback_on_error
def start_slot(
    db: Session,
    slot_id: int,
    *,
    expected_version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PresentationSlot:
    moment = _now(now)
    slot = get_slot_or_404(db, slot_id, lock=True)
    event = slot.event
    _check_version(slot, expected_version)
    if slot.status != SlotStatus.BOOKED:
        raise InvalidTransition("Only a booked slot can be started")
    if not within_window(moment, event.presentation_start, event.presentation_end):
        raise WindowClosed("Presentations for this event are not running right now")

    _transition(db, slot, SlotStatus.BOOKED, {
        "status": SlotStatus.IN_PROGRESS,
        "started_at": moment,
    })
    db.commit()
    db.refresh(slot)
    logger.info("Slot %s started", slot.id)
    return slot


@rollback_on_error
def submit_grades(
    db: Session,
    slot_id: int,
    grades,
    individual_grades=None,
    feedback: Optional[str] = None,
    *,
    expected_version: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PresentationSlot:
    moment = _now(now)
    slot = get_slot_or_404(db, slot_id, lock=True)
    event = slot.event
    _check_version(slot, expected_version)
    if slot.status != SlotStatus.IN_PROGRESS:
        raise InvalidTransition("Only an in-progress presentation can be graded")

    criteria = resolve_criteria(event.custom_grading_criteria, event.grading_criteria)
    member_emails = [participant.email for participant in slot.participants]
    errors = validate_grade_sheet(grades, individual_grades, criteria, member_emails)
    if errors:
        raise ValidationError("Invalid grade sheet", errors)

    clean_individual = None
    if individual_grades is not None:
        clean_individual = {
            normalize_email(email): dict(sheet) for email, sheet in individual_grades.items()
        }
    total = team_score(grades, criteria)

    _transition(db, slot, SlotStatus.IN_PROGRESS, {
        "status": SlotStatus.COMPLETED,
        "grades": dict(grades),
        "individual_grades": clean_individual,
        "total_score": total,
        "feedback": normalize_text(feedback),
        "completed_at": moment,
    })
    db.commit()
    db.refresh(slot)
    logger.info("Slot %s completed with total score %s", slot.id, total)
    return slot
