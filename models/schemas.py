# schemas.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExerciseRecord(BaseModel):
    """
    One exercise of a training day as seen by the client.
    Server records carry the persisted id; records built from a generated plan
    carry a temporary "local-" id until the server acknowledges them.
    """
    exerciseId: str                              # Stable identity (server or temporary local id)
    name: str = ""
    day: Optional[str] = None                    # ISO date of the training day
    totalSets: int = Field(default=0, ge=0)
    totalReps: int = Field(default=0, ge=0)
    completedSets: int = Field(default=0, ge=0)
    completedReps: int = Field(default=0, ge=0)
    completePercent: int = Field(default=0, ge=0, le=100)
    completedByUser: bool = False
    lastModifiedAt: float = 0.0                  # Local monotonic timestamp, never sent by the server


class ExercisePatch(BaseModel):
    """User-editable subset of an ExerciseRecord accepted by trackChange."""
    model_config = ConfigDict(extra="forbid")

    completedSets: Optional[int] = Field(default=None, ge=0)
    completedReps: Optional[int] = Field(default=None, ge=0)
    completedByUser: Optional[bool] = None


class PendingUpdate(BaseModel):
    """
    Not-yet-acknowledged change for a single exercise.
    Newer edits are merged into the patch in place, so there is at most one per exerciseId.
    """
    exerciseId: str
    patch: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0                            # Failed flushes since the last local edit
    enqueuedAt: float = 0.0
    version: int = 1                             # Bumped on every merged edit
    failed: bool = False                         # Parked: retry ceiling hit or permanently rejected
    lastError: Optional[str] = None


class TokenPair(BaseModel):
    """Credential pair returned by the login and refresh endpoints."""
    accessToken: str = Field(min_length=1)
    refreshToken: str = Field(min_length=1)
    expiresAt: Optional[datetime] = None

    @field_validator("expiresAt")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Session(TokenPair):
    """Current credentials; owned by the authenticated request pipeline only."""


class SyncStatus(BaseModel):
    """Sync health reported to the UI layer."""
    pendingCount: int = 0
    lastSyncAt: Optional[datetime] = None
    failedEntries: List[str] = Field(default_factory=list)
    failureReasons: Dict[str, str] = Field(default_factory=dict)
    inFlight: int = 0
    authRequired: bool = False
    message: str = ""


class FlushReport(BaseModel):
    """Outcome counters of a single sync cycle."""
    sent: int = 0
    acknowledged: int = 0
    retrying: int = 0
    failed: int = 0
    skipped: int = 0                             # Entries already in flight from another cycle


class UserProfile(BaseModel):
    """Profile forwarded to the plan generation service."""
    age: Optional[int] = Field(default=None, ge=0)
    weightKg: Optional[float] = Field(default=None, gt=0)
    heightCm: Optional[float] = Field(default=None, gt=0)
    goal: str = "general fitness"
    experienceLevel: str = "beginner"
    daysPerWeek: int = Field(default=3, ge=1, le=7)
    equipment: List[str] = Field(default_factory=list)


class PlanExercise(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exerciseId: Optional[str] = None
    name: str = Field(min_length=1)
    sets: int = Field(ge=1)
    reps: int = Field(ge=1)
    restSeconds: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None


class PlanDay(BaseModel):
    model_config = ConfigDict(extra="forbid")

    day: str = Field(min_length=1)               # ISO date
    focus: Optional[str] = None
    exercises: List[PlanExercise] = Field(default_factory=list)


class GeneratedPlan(BaseModel):
    """Strict shape of the plan returned by the LLM proxy."""
    model_config = ConfigDict(extra="forbid")

    planId: Optional[str] = None
    title: str = ""
    days: List[PlanDay] = Field(min_length=1)


class LoginRequest(BaseModel):
    email: str
    password: str


class SyncTrigger(BaseModel):
    reason: str = "foreground"                  # "foreground" or "reconnect"
