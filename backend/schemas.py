from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, time

from time_utils import ensure_timezone_optional


class RoleEnum(str, Enum):
    STUDENT = "student"
    FACULTY = "faculty"
    ADMIN = "admin"
    CLUBS = "clubs"


class ParticipationTypeEnum(str, Enum):
    INDIVIDUAL = "individual"
    TEAM = "team"


class SlotStatusEnum(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


def _enum_value(value):
    if isinstance(value, Enum):
        return value.value
    return value


# Caller identity, supplied by the auth collaborator on every call
class CallerContext(BaseModel):
    user_id: str
    name: str
    email: str
    role: RoleEnum
    year: Optional[int] = None
    school: Optional[str] = None
    department: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return str(value or "").strip().lower()


# Event configuration
class GradingCriterion(BaseModel):
    name: str
    weight: int


class TimeWindow(BaseModel):
    start: datetime
    end: datetime


class SlotConfig(BaseModel):
    duration_minutes: int = 15
    buffer_minutes: int = 5
    daily_start_time: time = time(9, 0)
    daily_end_time: time = time(17, 0)


class TargetAudience(BaseModel):
    years: List[int] = Field(default_factory=list)
    schools: List[str] = Field(default_factory=list)
    departments: List[str] = Field(default_factory=list)


class PresentationEventCreate(BaseModel):
    title: str
    description: Optional[str] = None
    venue: str
    participation_type: ParticipationTypeEnum = ParticipationTypeEnum.INDIVIDUAL
    team_size_min: int = 1
    team_size_max: int = 1
    registration_window: TimeWindow
    presentation_window: TimeWindow
    slot_config: SlotConfig = Field(default_factory=SlotConfig)
    target_audience: TargetAudience = Field(default_factory=TargetAudience)
    custom_grading_criteria: bool = False
    grading_criteria: Optional[List[GradingCriterion]] = None


class PresentationEventUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    venue: Optional[str] = None
    registration_window: Optional[TimeWindow] = None
    presentation_window: Optional[TimeWindow] = None
    slot_config: Optional[SlotConfig] = None
    target_audience: Optional[TargetAudience] = None
    custom_grading_criteria: Optional[bool] = None
    grading_criteria: Optional[List[GradingCriterion]] = None


# Booking and grading payloads
class ParticipantIn(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1)
    roll_number: Optional[str] = None


class SlotBookingRequest(BaseModel):
    participants: List[ParticipantIn]
    topic: str = Field(..., min_length=1)
    team_name: Optional[str] = None
    attachment_ref: Optional[str] = None


class GradeSubmission(BaseModel):
    grades: Dict[str, Any]
    individual_grades: Optional[Dict[str, Dict[str, Any]]] = None
    feedback: Optional[str] = None


# Responses
class ParticipantResponse(BaseModel):
    position: int
    email: str
    name: str
    roll_number: Optional[str] = None

    class Config:
        from_attributes = True


class PresentationSlotResponse(BaseModel):
    id: int
    event_id: int
    start_time: datetime
    end_time: datetime
    status: SlotStatusEnum
    version: int
    topic: Optional[str] = None
    team_name: Optional[str] = None
    attachment_ref: Optional[str] = None
    booked_by_user_id: Optional[str] = None
    participants: List[ParticipantResponse] = Field(default_factory=list)
    booked_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    grades: Optional[Dict[str, int]] = None
    individual_grades: Optional[Dict[str, Dict[str, int]]] = None
    total_score: Optional[int] = None
    member_scores: Dict[str, int] = Field(default_factory=dict)
    feedback: Optional[str] = None

    class Config:
        from_attributes = True

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return _enum_value(value)

    @field_validator("start_time", "end_time", "booked_at", "started_at", "completed_at", mode="before")
    @classmethod
    def attach_timezone(cls, value):
        if isinstance(value, datetime):
            return ensure_timezone_optional(value)
        return value


class PresentationEventResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    venue: str
    host_user_id: str
    host_name: str
    host_email: Optional[str] = None
    host_department: Optional[str] = None
    participation_type: ParticipationTypeEnum
    team_size_min: int
    team_size_max: int
    registration_window: TimeWindow
    presentation_window: TimeWindow
    slot_config: SlotConfig
    target_audience: TargetAudience
    custom_grading_criteria: bool
    grading_criteria: List[GradingCriterion]
    slots: List[PresentationSlotResponse] = Field(default_factory=list)
    slot_count: int = 0
    available_slot_count: int = 0

    @field_validator("participation_type", mode="before")
    @classmethod
    def coerce_participation_type(cls, value):
        return _enum_value(value)


class SlotPreviewResponse(BaseModel):
    slot_times: List[str]
    slots_per_day: int
    total_slots: int


class PresentationLogResponse(BaseModel):
    id: int
    event_id: Optional[int] = None
    slot_id: Optional[int] = None
    actor_user_id: Optional[str] = None
    actor_email: Optional[str] = None
    actor_role: Optional[str] = None
    action: str
    meta: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
