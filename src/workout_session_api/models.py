"""Data models for workout sessions."""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SessionPhase(str, Enum):
    """Playback phase of a live session."""
    active = "active"
    resting = "resting"
    finished = "finished"


class ExerciseRef(BaseModel):
    """An exercise from the exercise library."""
    id: str
    name: str
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    muscle_groups: List[str] = Field(default_factory=list)
    equipment: Optional[str] = None

    class Config:
        extra = "ignore"  # Library rows carry description, difficulty, created_by, ...


class WorkoutDefinition(BaseModel):
    """Admin-authored workout plan. Read-only during a session."""
    id: str
    name: str
    division_letter: Optional[str] = None  # "A", "B", ... for split programs
    muscle_groups: List[str] = Field(default_factory=list)
    duration_minutes: Optional[int] = None
    calories: Optional[int] = None

    class Config:
        extra = "ignore"


class ExerciseSlot(BaseModel):
    """
    One exercise's configuration within a workout.

    Slots are played back in ``order_index`` order. Substitution swaps
    ``exercise`` and nothing else.
    """
    id: str
    exercise: ExerciseRef
    order_index: int
    sets: int = Field(default=3, ge=0)
    reps_min: int = Field(default=8, ge=0)
    reps_max: int = Field(default=12, ge=0)
    rest_seconds: int = Field(default=60, ge=0)
    notes: Optional[str] = None

    @property
    def reps_label(self) -> str:
        if self.reps_min == self.reps_max:
            return str(self.reps_min)
        return f"{self.reps_min}-{self.reps_max}"


class SetRecord(BaseModel):
    """The in-session, mutable record of one attempted set."""
    reps: int = Field(default=0, ge=0)
    weight: float = Field(default=0.0, ge=0)
    completed: bool = False

    @classmethod
    def for_slot(cls, slot: ExerciseSlot) -> "SetRecord":
        return cls(reps=slot.reps_min, weight=0.0, completed=False)


class SetLog(BaseModel):
    """Row written to ``exercise_logs`` for each completed set."""
    workout_log_id: str
    exercise_id: str
    set_number: int  # 1-based
    reps: int
    weight_kg: float
    completed: bool = True


class CurrentUser(BaseModel):
    """Authenticated caller, passed explicitly into the session service."""
    user_id: str
    metadata: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Snapshots returned to clients
# ---------------------------------------------------------------------------


class SlotSnapshot(BaseModel):
    index: int
    slot: ExerciseSlot
    reps_label: str
    records: List[SetRecord]
    is_active: bool = False
    is_completed: bool = False


class SessionStateSnapshot(BaseModel):
    phase: SessionPhase
    current_exercise_index: int
    current_set_index: int
    elapsed_seconds: int
    is_resting: bool
    is_paused: bool
    rest_remaining_seconds: int
    rest_total_seconds: int
    rest_progress_percent: float = 0.0
    completed_exercise_ids: List[str]
    progress_percent: float


class SessionSnapshot(BaseModel):
    session_id: str
    workout: WorkoutDefinition
    started_at: Optional[datetime] = None
    state: SessionStateSnapshot
    slots: List[SlotSnapshot]


class FinalizeResult(BaseModel):
    """Outcome of finishing a session. ``errors`` feed the client's toast."""
    session_id: str
    completed_at: datetime
    duration_seconds: int
    duration_minutes: int
    sets_logged: int
    exercises_completed: int
    total_exercises: int
    calories: Optional[int] = None
    errors: List[str] = Field(default_factory=list)
    redirect: str

    @property
    def ok(self) -> bool:
        return not self.errors
