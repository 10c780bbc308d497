# SPDX-License-Identifier: AGPL-3.0-or-later
"""Workers and alerts as seen by the notification workflow."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Worker(BaseModel):
    """A helmet wearer plus the numbers to reach them and their family."""
    name: str
    helmet_id: str
    phone_number: Optional[str] = None
    family_phone_number: Optional[str] = None

    @field_validator("helmet_id")
    @classmethod
    def _non_empty_helmet(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("helmet_id must not be empty")
        return v

    @field_validator("phone_number", "family_phone_number", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Alert(BaseModel):
    """A safety alert raised by a helmet."""
    message: str
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)
    raised_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    acknowledged_at: Optional[datetime] = None

    @property
    def maps_link(self) -> str:
        return f"https://www.google.com/maps?q={self.lat},{self.lng}"

    @property
    def acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    def acknowledge(self, when: Optional[datetime] = None) -> "Alert":
        """Return a copy stamped with the acknowledgment time."""
        return self.model_copy(update={"acknowledged_at": when or datetime.now(timezone.utc)})


__all__ = ["Alert", "Worker"]
