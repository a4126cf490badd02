from sqlalchemy import Column, Integer, String, Boolean, DateTime, Time, Enum as SQLEnum, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base
import enum


class ParticipationType(enum.Enum):
    INDIVIDUAL = "individual"
    TEAM = "team"


class SlotStatus(enum.Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


LIVE_SLOT_STATUSES = (SlotStatus.BOOKED, SlotStatus.IN_PROGRESS, SlotStatus.COMPLETED)


class PresentationEvent(Base):
    __tablename__ = "presentation_events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    venue = Column(String(255), nullable=False)
    host_user_id = Column(String(64), nullable=False, index=True)
    host_name = Column(String(255), nullable=False)
    host_email = Column(String(255), nullable=True)
    host_department = Column(String(255), nullable=True)
    participation_type = Column(SQLEnum(ParticipationType), default=ParticipationType.INDIVIDUAL, nullable=False)
    team_size_min = Column(Integer, default=1, nullable=False)
    team_size_max = Column(Integer, default=1, nullable=False)
    registration_start = Column(DateTime(timezone=True), nullable=False)
    registration_end = Column(DateTime(timezone=True), nullable=False)
    presentation_start = Column(DateTime(timezone=True), nullable=False)
    presentation_end = Column(DateTime(timezone=True), nullable=False)
    slot_duration_minutes = Column(Integer, nullable=False)
    slot_buffer_minutes = Column(Integer, default=0, nullable=False)
    daily_start_time = Column(Time, nullable=False)
    daily_end_time = Column(Time, nullable=False)
    target_years = Column(JSON, nullable=True)  # [1, 2, 3]
    target_schools = Column(JSON, nullable=True)
    target_departments = Column(JSON, nullable=True)
    custom_grading_criteria = Column(Boolean, default=False, nullable=False)
    grading_criteria = Column(JSON, nullable=True)  # [{"name": "Content", "weight": 30}, ...]
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    slots = relationship(
        "PresentationSlot",
        back_populates="event",
        order_by="PresentationSlot.start_time",
        cascade="all, delete-orphan",
    )


class PresentationSlot(Base):
    __tablename__ = "presentation_slots"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("presentation_events.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(SQLEnum(SlotStatus), default=SlotStatus.AVAILABLE, nullable=False, index=True)
    version = Column(Integer, default=0, nullable=False)
    topic = Column(String(255), nullable=True)
    team_name = Column(String(255), nullable=True)
    attachment_ref = Column(String(500), nullable=True)
    booked_by_user_id = Column(String(64), nullable=True, index=True)
    booked_by_email = Column(String(255), nullable=True)
    booked_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    grades = Column(JSON, nullable=True)  # {"Content": 80, ...}
    individual_grades = Column(JSON, nullable=True)  # {"a@x.edu": {"Content": 80}, ...}
    total_score = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    event = relationship("PresentationEvent", back_populates="slots")
    participants = relationship(
        "PresentationSlotParticipant",
        back_populates="slot",
        order_by="PresentationSlotParticipant.position",
        cascade="all, delete-orphan",
    )


class PresentationSlotParticipant(Base):
    __tablename__ = "presentation_slot_participants"

    id = Column(Integer, primary_key=True, index=True)
    slot_id = Column(Integer, ForeignKey("presentation_slots.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("presentation_events.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)  # 0 = team lead
    # One live booking per email across all events.
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    roll_number = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    slot = relationship("PresentationSlot", back_populates="participants")


class PresentationLog(Base):
    __tablename__ = "presentation_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, nullable=True, index=True)
    slot_id = Column(Integer, nullable=True)
    actor_user_id = Column(String(64), nullable=True)
    actor_email = Column(String(255), nullable=True)
    actor_role = Column(String(20), nullable=True)
    action = Column(String(255), nullable=False)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SystemConfig(Base):
    __tablename__ = "system_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String(500), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
