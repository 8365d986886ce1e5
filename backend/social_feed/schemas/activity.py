"""Pydantic schemas for the profile activity grid (strength + indoor + outdoor sessions)."""

from enum import Enum

from pydantic import BaseModel, Field


class ActivitySource(str, Enum):
    STRENGTH = "strength"
    INDOOR = "indoor"
    OUTDOOR = "outdoor"


class UnifiedActivity(BaseModel):
    """One grid tile; fields that do not apply to the source stay None."""

    id: str
    source: ActivitySource
    kind: str
    started_at: str | None = None
    duration_s: float | None = None
    distance_m: float | None = None
    pace_s_per_km: float | None = None
    pace_s_per_mi: float | None = None
    total_volume: float | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source.value, self.id)


class SourceCursor(BaseModel):
    offset: int = Field(default=0, ge=0)
    exhausted: bool = False


class ActivityCursor(BaseModel):
    """Independent offset + exhausted flag per source."""

    strength: SourceCursor = Field(default_factory=SourceCursor)
    indoor: SourceCursor = Field(default_factory=SourceCursor)
    outdoor: SourceCursor = Field(default_factory=SourceCursor)

    def for_source(self, source: ActivitySource) -> SourceCursor:
        return getattr(self, source.value)

    def all_exhausted(self, sources: list[ActivitySource] | None = None) -> bool:
        selected = sources if sources is not None else list(ActivitySource)
        return all(self.for_source(s).exhausted for s in selected)


class ActivityStepRequest(BaseModel):
    """Body for POST /users/{id}/activities: the cursor from the previous response."""

    cursor: ActivityCursor = Field(default_factory=ActivityCursor)
    sources: list[ActivitySource] | None = None
    reset: bool = False


class ActivityStepResponse(BaseModel):
    items: list[UnifiedActivity]
    cursor: ActivityCursor
    done: bool
