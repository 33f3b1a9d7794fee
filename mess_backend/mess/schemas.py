"""Mess off-day Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from mess_backend.common.constants import MealType, OffDayKind, OffDayStatus


class OffDayCreate(BaseModel):
    """Payload for declaring a single off day or an off-day range.

    A single off day uses ``off_date`` + ``meal_types``; a range uses
    ``start_date``/``end_date`` with per-boundary meal selections (days in
    between are fully closed).
    """

    mess_id: uuid.UUID
    kind: OffDayKind = OffDayKind.single
    off_date: Optional[date] = None
    meal_types: Optional[list[MealType]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_date_meal_types: Optional[list[MealType]] = None
    end_date_meal_types: Optional[list[MealType]] = None
    reason: str = Field(..., min_length=3, max_length=500)

    @model_validator(mode="after")
    def validate_kind(self) -> "OffDayCreate":
        if self.kind == OffDayKind.single:
            if self.off_date is None:
                raise ValueError("off_date is required for a single off day.")
        else:
            if self.start_date is None or self.end_date is None:
                raise ValueError("start_date and end_date are required for an off-day range.")
            if self.start_date > self.end_date:
                raise ValueError("start_date must be on or before end_date.")
        return self


class OffDayCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OffDayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    mess_id: uuid.UUID
    kind: OffDayKind
    off_date: Optional[date] = None
    meal_types: Optional[list[MealType]] = None
    range_start_date: Optional[date] = None
    range_end_date: Optional[date] = None
    start_date_meal_types: Optional[list[MealType]] = None
    end_date_meal_types: Optional[list[MealType]] = None
    reason: Optional[str] = None
    status: OffDayStatus
    created_by: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime


class OffDayUpdate(BaseModel):
    """Partial edit of an active off day; its kind cannot change.

    Omitted fields keep their stored values.
    """

    off_date: Optional[date] = None
    meal_types: Optional[list[MealType]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_date_meal_types: Optional[list[MealType]] = None
    end_date_meal_types: Optional[list[MealType]] = None
    reason: Optional[str] = Field(None, min_length=3, max_length=500)


class OffDayStatsOut(BaseModel):
    total: int = 0
    active: int = 0
    cancelled: int = 0
    upcoming: int = 0
    this_week: int = 0
    this_month: int = 0
