"""Engine configuration."""

from datetime import datetime, timezone
from typing import Dict

from pydantic import BaseModel, Field, field_validator

from mls_kernel.models.access import ClearanceLevel

# Nominal "current" instant of the dataset. Relative and absolute query
# windows are measured against it, not against the wall clock.
DATA_REFERENCE_TIME = datetime(2024, 5, 12, 10, 0, tzinfo=timezone.utc)


class EngineConfig(BaseModel):
    """Configuration shared by the pipeline, the stores and the API."""

    reference_time: datetime = DATA_REFERENCE_TIME
    min_k: int = Field(ge=1, default=2)
    budget_max_by_level: Dict[ClearanceLevel, int] = {
        ClearanceLevel.SECRET: 20,
        ClearanceLevel.CONFIDENTIAL: 8,
        ClearanceLevel.UNCLASSIFIED: 5,
    }
    budget_reset_interval_seconds: int = 3600
    default_geo_radius_km: float = 10.0
    realtime_window_hours: float = 0.25
    query_type: str = "NL_QUERY"

    @field_validator("reference_time")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """Naive reference times are taken as UTC, like every node timestamp."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def max_budget(self, level: ClearanceLevel) -> int:
        return self.budget_max_by_level.get(
            level, self.budget_max_by_level.get(ClearanceLevel.UNCLASSIFIED, 5)
        )
