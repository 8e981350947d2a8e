from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _check_hhmm(value: str | None) -> str | None:
    if value is None:
        return None
    raw = value.strip()
    parts = raw.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError("time must be formatted as HH:MM")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError("time must be formatted as HH:MM")
    return f"{hours:02d}:{minutes:02d}"


def _check_phone(value: str | None) -> str | None:
    if value is None:
        return None
    digits = "".join(ch for ch in value if ch.isdigit())
    if len(digits) < 8 or len(digits) > 20:
        raise ValueError("phone must contain 8 to 20 digits")
    return digits


class TenantCreate(BaseModel):
    slug: str = Field(min_length=2, max_length=80, pattern=r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")
    name: str = Field(min_length=2, max_length=120)


class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    is_active: bool


class BusinessHoursIn(BaseModel):
    open_time: str
    close_time: str
    open_days: list[int] = Field(min_length=0, max_length=7)
    timezone: str = Field(min_length=1, max_length=64)
    holiday_country: str | None = Field(default=None, min_length=2, max_length=8)

    @field_validator("open_time", "close_time")
    @classmethod
    def validate_times(cls, value: str) -> str:
        return _check_hhmm(value)

    @field_validator("open_days")
    @classmethod
    def validate_open_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("open_days must be within 0..6 (0 = Sunday)")
        return sorted(set(value))


class BusinessHoursOut(BaseModel):
    open_time: str
    close_time: str
    open_days: list[int]
    timezone: str
    holiday_country: str | None = None


class ServiceCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    description: str | None = Field(default=None, max_length=1000)
    price: float = Field(default=0, ge=0)
    duration_min: int = Field(gt=0, le=24 * 60)


class ServiceUpdate(BaseModel):
    # duration_min is rejected here: it cannot change after creation.
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=2, max_length=120)
    description: str | None = Field(default=None, max_length=1000)
    price: float | None = Field(default=None, ge=0)


class ServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str = ""
    price: float
    duration_min: int
    is_active: bool


class ProfessionalCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    description: str | None = Field(default=None, max_length=1000)
    service_ids: list[int] = Field(default_factory=list)


class ProfessionalUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    description: str | None = Field(default=None, max_length=1000)
    service_ids: list[int] | None = None


class ProfessionalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str = ""
    service_ids: list[int]
    is_active: bool


class AvailabilityCreate(BaseModel):
    professional_id: int
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    is_available: bool = True
    lunch_start: str | None = None
    lunch_end: str | None = None

    @field_validator("start_time", "end_time", "lunch_start", "lunch_end")
    @classmethod
    def validate_times(cls, value: str | None) -> str | None:
        return _check_hhmm(value)


class AvailabilityUpdate(BaseModel):
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: str | None = None
    end_time: str | None = None
    is_available: bool | None = None
    lunch_start: str | None = None
    lunch_end: str | None = None

    @field_validator("start_time", "end_time", "lunch_start", "lunch_end")
    @classmethod
    def validate_times(cls, value: str | None) -> str | None:
        return _check_hhmm(value)


class AvailabilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    professional_id: int
    day_of_week: int
    start_time: str
    end_time: str
    is_available: bool
    lunch_start: str | None = None
    lunch_end: str | None = None


class WindowOut(BaseModel):
    start: str
    end: str
    lunch_start: str | None = None
    lunch_end: str | None = None


class SlotDiagnosticOut(BaseModel):
    time: str
    available: bool
    is_past: bool
    conflicts: list[int]
    lunch_break: bool = False


class DayAvailabilityOut(BaseModel):
    professional_id: int
    date: str
    available_slots: list[str]
    reason: str | None = None
    window: WindowOut | None = None
    diagnostics: list[SlotDiagnosticOut]


class AppointmentCreate(BaseModel):
    client_name: str = Field(min_length=2, max_length=120)
    client_phone: str = Field(min_length=8, max_length=40)
    service_id: int
    professional_id: int
    start_time: datetime
    is_loyalty_reward: bool = False

    @field_validator("client_phone")
    @classmethod
    def normalize_phone(cls, value: str) -> str:
        return _check_phone(value)


class AppointmentOut(BaseModel):
    id: int
    client_name: str
    client_phone: str
    service_id: int
    service_name: str | None = None
    professional_id: int
    professional_name: str | None = None
    start_time: datetime
    end_time: datetime
    duration_min: int
    status: str
    is_loyalty_reward: bool
    created_at: datetime


class AppointmentStatusUpdate(BaseModel):
    status: str = Field(min_length=2, max_length=32)
    note: str | None = Field(default=None, max_length=300)


class AppointmentLookup(BaseModel):
    client_phone: str | None = Field(default=None, max_length=40)
    client_name: str | None = Field(default=None, max_length=120)

    @field_validator("client_phone")
    @classmethod
    def normalize_phone(cls, value: str | None) -> str | None:
        return _check_phone(value)


class AppointmentStatusEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: int
    from_status: str | None = None
    to_status: str
    actor: str | None = None
    note: str | None = None
    created_at: datetime


class LoyaltyOut(BaseModel):
    client_name: str
    client_phone: str
    total_attendances: int
    free_services_used: int
    eligible_rewards: int
    attendances_until_next_reward: int
    last_reward_at: datetime | None = None


class RewardGrant(BaseModel):
    client_phone: str = Field(min_length=8, max_length=40)
    client_name: str | None = Field(default=None, min_length=2, max_length=120)

    @field_validator("client_phone")
    @classmethod
    def normalize_phone(cls, value: str) -> str:
        return _check_phone(value)
