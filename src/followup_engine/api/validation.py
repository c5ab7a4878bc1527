"""
API Query Validation.

Uses Pydantic for query-string validation. Request bodies are
validated by the service layer.
"""

from datetime import datetime
from typing import List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from followup_engine.core import is_valid_timezone
from followup_engine.core.exceptions import ValidationError
from followup_engine.core.models import FollowUpStatus
from followup_engine.services.validation import format_validation_errors


Q = TypeVar("Q", bound=BaseModel)


class CancelFollowUpQuery(BaseModel):
    """Query string of DELETE /follow-ups/<id>."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: Optional[str] = Field(default=None, max_length=500)
    cascade: bool = False
    cancel_recurring: bool = Field(default=False, alias="cancelRecurring")

    @property
    def should_cascade(self) -> bool:
        return self.cascade or self.cancel_recurring


class ConflictCheckQuery(BaseModel):
    """Query string of GET /follow-ups/conflicts."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    client_id: str = Field(..., min_length=1, alias="clientId")
    start_time: datetime = Field(..., alias="startTime")
    duration: Optional[int] = Field(default=None, gt=0)
    timezone: Optional[str] = None
    exclude_id: Optional[str] = Field(default=None, alias="excludeId")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_timezone(v):
            raise ValueError(f"unknown timezone '{v}'")
        return v


class ClientFollowUpsQuery(BaseModel):
    """Query string of GET /follow-ups/client/<clientId>."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    upcoming_only: bool = Field(default=False, alias="upcomingOnly")
    overdue_only: bool = Field(default=False, alias="overdueOnly")
    status: List[FollowUpStatus] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_filters(self) -> "ClientFollowUpsQuery":
        if self.upcoming_only and self.overdue_only:
            raise ValueError("upcomingOnly, overdueOnly: cannot be combined")
        return self


def parse_query(model_cls: Type[Q], args: Mapping[str, object]) -> Q:
    """
    Validate query parameters.

    Raises:
        ValidationError: Listing every invalid parameter.
    """
    try:
        return model_cls.model_validate(dict(args))
    except PydanticValidationError as e:
        raise ValidationError("Validation failed", format_validation_errors(e)) from e
