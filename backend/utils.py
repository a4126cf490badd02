import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import PresentationLog

logger = logging.getLogger(__name__)


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def normalize_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = str(value).strip()
    return normalized or None


def log_presentation_action(
    db: Session,
    caller,
    action: str,
    event_id: Optional[int] = None,
    slot_id: Optional[int] = None,
    meta: Optional[dict] = None,
    commit: bool = True,
):
    role = getattr(caller, "role", None)
    db.add(PresentationLog(
        event_id=event_id,
        slot_id=slot_id,
        actor_user_id=getattr(caller, "user_id", None) if caller else None,
        actor_email=getattr(caller, "email", None) if caller else None,
        actor_role=getattr(role, "value", role),
        action=action,
        meta=meta,
    ))
    if commit:
        db.commit()
    logger.info("%s event=%s slot=%s by=%s", action, event_id, slot_id, getattr(caller, "user_id", None))
