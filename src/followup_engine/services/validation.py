"""
Follow-up Request Validation.

Uses Pydantic for payload parsing. Structural problems (missing fields,
bad enum members, unparseable dates) come from the models; rules that
span several fields or depend on the clock are checked by
FollowUpValidator. Every violation is reported as "field: message".
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from followup_engine.config import SchedulingSettings, settings
from followup_engine.core import is_valid_timezone, localize, now_utc
from followup_engine.core.exceptions import ValidationError
from followup_engine.core.models import (
    FollowUpCategory,
    FollowUpStatus,
    IntervalUnit,
    Priority,
    RecurrencePattern,
    RecurrenceSpec,
)


M = TypeVar("M", bound=BaseModel)

# Fields an update may set back to null
CLEARABLE_FIELDS = frozenset({"notes", "outcome", "service_id"})


def format_validation_errors(error: PydanticValidationError) -> List[str]:
    """Flatten pydantic errors into "field: message" strings."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        message = item["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{location}: {message}" if location else message)
    return messages


def _check_timezone(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_valid_timezone(value):
        raise ValueError(f"unknown timezone '{value}'")
    return value


class RecurrenceData(BaseModel):
    """Optional recurrence parameters."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    interval: int = Field(default=1, ge=1)
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    max_occurrences: Optional[int] = Field(default=None, ge=1, alias="maxOccurrences")


class ScheduleFollowUpRequest(BaseModel):
    """Request body for POST /follow-ups/schedule."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    client_id: str = Field(..., min_length=1, alias="clientId")
    service_id: Optional[str] = Field(default=None, alias="serviceId")
    scheduled_date: datetime = Field(..., alias="scheduledDate")
    timezone: str = Field(default_factory=lambda: settings.scheduling.default_timezone)
    duration: int = Field(
        default_factory=lambda: settings.scheduling.default_duration_minutes,
        gt=0,
    )
    title: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None
    priority: Optional[Priority] = None
    category: Optional[FollowUpCategory] = None
    recurrence_pattern: RecurrencePattern = Field(
        default=RecurrencePattern.NONE,
        alias="recurrencePattern",
    )
    recurrence_data: Optional[RecurrenceData] = Field(default=None, alias="recurrenceData")
    reminder_days: List[int] = Field(
        default_factory=lambda: list(settings.scheduling.reminder_days),
        alias="reminderDays",
    )
    custom_interval: Optional[int] = Field(default=None, alias="customInterval")
    custom_interval_unit: Optional[IntervalUnit] = Field(default=None, alias="customIntervalUnit")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        return _check_timezone(v)

    @field_validator("reminder_days")
    @classmethod
    def validate_reminder_days(cls, v: List[int]) -> List[int]:
        if any(day < 0 for day in v):
            raise ValueError("reminder offsets must be zero or positive")
        return v

    @model_validator(mode="after")
    def normalize_dates(self) -> "ScheduleFollowUpRequest":
        """Read naive dates as wall-clock time in the request timezone."""
        self.scheduled_date = localize(self.scheduled_date, self.timezone)
        if self.recurrence_data is not None and self.recurrence_data.end_date is not None:
            self.recurrence_data.end_date = localize(self.recurrence_data.end_date, self.timezone)
        return self

    def recurrence_spec(self) -> RecurrenceSpec:
        data = self.recurrence_data or RecurrenceData()
        return RecurrenceSpec(
            pattern=self.recurrence_pattern,
            interval=data.interval,
            end_date=data.end_date,
            max_occurrences=data.max_occurrences,
        )


class UpdateFollowUpRequest(BaseModel):
    """
    Request body for PUT /follow-ups/<id>.

    Every field is optional. A field left out is untouched; a field sent
    as null is cleared, which only ``notes``, ``outcome`` and
    ``serviceId`` allow.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    scheduled_date: Optional[datetime] = Field(default=None, alias="scheduledDate")
    timezone: Optional[str] = None
    duration: Optional[int] = Field(default=None, gt=0)
    title: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None
    outcome: Optional[str] = None
    action_items: Optional[List[str]] = Field(default=None, alias="actionItems")
    priority: Optional[Priority] = None
    category: Optional[FollowUpCategory] = None
    status: Optional[FollowUpStatus] = None
    service_id: Optional[str] = Field(default=None, alias="serviceId")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)

    def changes(self) -> Dict[str, Any]:
        """Fields present in the payload, by attribute name."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    @classmethod
    def alias_for(cls, name: str) -> str:
        return cls.model_fields[name].alias or name


class CompleteFollowUpRequest(BaseModel):
    """Request body for PATCH /follow-ups/<id>."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    outcome: str = Field(..., min_length=1)
    action_items: List[str] = Field(default_factory=list, alias="actionItems")
    notes: Optional[str] = None
    schedule_next: bool = Field(default=False, alias="scheduleNext")
    next_follow_up_date: Optional[datetime] = Field(default=None, alias="nextFollowUpDate")
    next_follow_up_notes: Optional[str] = Field(default=None, alias="nextFollowUpNotes")

    @field_validator("action_items")
    @classmethod
    def drop_blank_items(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v if item and item.strip()]


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a request payload."""
    is_valid: bool
    errors: Tuple[str, ...] = ()


def _provided_fields(model_cls: Type[BaseModel], payload: Dict[str, Any]) -> Set[str]:
    """Names of the model fields present in the payload, by alias or name."""
    return {
        name for name, info in model_cls.model_fields.items()
        if (info.alias or name) in payload or name in payload
    }


def _parse_valid_fields(
    model_cls: Type[BaseModel],
    payload: Dict[str, Any],
    failed: Set[str],
) -> Dict[str, Any]:
    """
    Parse, one by one, the fields of a rejected payload that are valid.

    Absent optional fields take their default; failed and absent
    required fields are left out.
    """
    values: Dict[str, Any] = {}
    for name, info in model_cls.model_fields.items():
        key = info.alias or name
        if key in failed or name in failed:
            continue
        if key in payload or name in payload:
            raw = payload[key] if key in payload else payload[name]
            try:
                values[name] = TypeAdapter(info.annotation).validate_python(raw)
            except PydanticValidationError:
                continue
        elif not info.is_required():
            values[name] = info.get_default(call_default_factory=True)
    return values


class FollowUpValidator:
    """Validates create, update and complete payloads."""

    def __init__(self, scheduling: Optional[SchedulingSettings] = None) -> None:
        self._scheduling = scheduling or settings.scheduling

    @staticmethod
    def _build(model_cls: Type[M], payload: Any) -> Tuple[Optional[M], Dict[str, Any], List[str]]:
        """
        Validate a payload against a request model.

        When the model rejects the payload, the fields that are valid on
        their own are still returned so that rules spanning several
        fields report alongside the structural errors.

        Returns:
            (request or None, field values by name, errors)
        """
        if not isinstance(payload, dict):
            return None, {}, ["body: must be a JSON object"]
        try:
            request = model_cls.model_validate(payload)
        except PydanticValidationError as e:
            failed = {str(item["loc"][0]) for item in e.errors() if item["loc"]}
            return None, _parse_valid_fields(model_cls, payload, failed), format_validation_errors(e)
        return request, dict(request), []

    @staticmethod
    def _raise_if_invalid(errors: List[str]) -> None:
        if errors:
            raise ValidationError("Validation failed", errors)

    def _check_duration(self, duration: Optional[int], errors: List[str]) -> None:
        maximum = self._scheduling.max_duration_minutes
        if duration is not None and duration > maximum:
            errors.append(f"duration: must be at most {maximum} minutes")

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def _check_schedule(self, payload: Any) -> Tuple[Optional[ScheduleFollowUpRequest], List[str]]:
        request, values, errors = self._build(ScheduleFollowUpRequest, payload)

        self._check_duration(values.get("duration"), errors)

        tz_name = values.get("timezone")
        scheduled = values.get("scheduled_date")
        if scheduled is not None and tz_name is not None:
            scheduled = localize(scheduled, tz_name)
            if scheduled < now_utc():
                errors.append("scheduledDate: must not be in the past")

        custom_interval = values.get("custom_interval")
        if custom_interval is not None and custom_interval < 1:
            errors.append("customInterval: must be greater than 0")

        # Skipped when either custom field was rejected on its own
        if (
            values.get("recurrence_pattern") == RecurrencePattern.CUSTOM
            and "custom_interval" in values
            and "custom_interval_unit" in values
            and (not custom_interval or values["custom_interval_unit"] is None)
        ):
            errors.append(
                "customInterval, customIntervalUnit: both are required "
                "when recurrencePattern is CUSTOM"
            )

        data = values.get("recurrence_data")
        if data is not None and data.end_date is not None and scheduled is not None and tz_name is not None:
            if localize(data.end_date, tz_name) < scheduled:
                errors.append("recurrenceData.endDate: must not be before scheduledDate")

        return request, errors

    def validate_schedule_request(self, payload: Any) -> ValidationResult:
        """
        Validate a create payload.

        Args:
            payload: Decoded JSON body.

        Returns:
            ValidationResult listing every violated field.
        """
        _, errors = self._check_schedule(payload)
        return ValidationResult(is_valid=not errors, errors=tuple(errors))

    def parse_schedule_request(self, payload: Any) -> ScheduleFollowUpRequest:
        """
        Parse a create payload.

        Raises:
            ValidationError: If the payload is invalid.
        """
        request, errors = self._check_schedule(payload)
        self._raise_if_invalid(errors)
        return request

    # -------------------------------------------------------------------------
    # Update
    # -------------------------------------------------------------------------

    def _check_update(self, payload: Any) -> Tuple[Optional[UpdateFollowUpRequest], List[str]]:
        request, values, errors = self._build(UpdateFollowUpRequest, payload)
        if not isinstance(payload, dict):
            return None, errors

        provided = _provided_fields(UpdateFollowUpRequest, payload)
        if not provided:
            errors.append("body: at least one updatable field is required")

        for name in sorted(provided, key=list(UpdateFollowUpRequest.model_fields).index):
            if name in values and values[name] is None and name not in CLEARABLE_FIELDS:
                errors.append(f"{UpdateFollowUpRequest.alias_for(name)}: cannot be cleared")

        self._check_duration(values.get("duration"), errors)

        # Naive dates are checked once the follow-up's timezone is known
        scheduled = values.get("scheduled_date")
        if scheduled is not None and scheduled.tzinfo is not None and scheduled < now_utc():
            errors.append("scheduledDate: must not be in the past")

        return request, errors

    def validate_update_request(self, payload: Any) -> ValidationResult:
        """Validate a partial update payload, field by field."""
        _, errors = self._check_update(payload)
        return ValidationResult(is_valid=not errors, errors=tuple(errors))

    def parse_update_request(self, payload: Any) -> UpdateFollowUpRequest:
        request, errors = self._check_update(payload)
        self._raise_if_invalid(errors)
        return request

    # -------------------------------------------------------------------------
    # Complete
    # -------------------------------------------------------------------------

    def _check_complete(self, payload: Any) -> Tuple[Optional[CompleteFollowUpRequest], List[str]]:
        request, values, errors = self._build(CompleteFollowUpRequest, payload)

        if (
            values.get("schedule_next")
            and "next_follow_up_date" in values
            and values["next_follow_up_date"] is None
        ):
            errors.append("nextFollowUpDate: required when scheduleNext is true")

        return request, errors

    def validate_complete_request(self, payload: Any) -> ValidationResult:
        _, errors = self._check_complete(payload)
        return ValidationResult(is_valid=not errors, errors=tuple(errors))

    def parse_complete_request(self, payload: Any) -> CompleteFollowUpRequest:
        request, errors = self._check_complete(payload)
        self._raise_if_invalid(errors)
        return request
