"""
Persistence gateway for workout sessions.

The session service talks to the hosted database only through
:class:`PersistenceGateway`. Raw PostgREST rows are mapped into the typed
models here, so loosely shaped rows never reach the state machine.

Tables:
- workout_plans      -> WorkoutDefinition
- workout_exercises  -> ExerciseSlot (joined with exercises)
- workout_logs       -> SessionLog
- exercise_logs      -> SetLog
- exercises          -> ExerciseRef (substitution candidates)
- profiles / workout_programs -> program progress
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from workout_session_api.models import (
    ExerciseRef,
    ExerciseSlot,
    SetLog,
    WorkoutDefinition,
)

logger = logging.getLogger(__name__)

WORKOUT_PLANS_TABLE = "workout_plans"
WORKOUT_EXERCISES_TABLE = "workout_exercises"
WORKOUT_LOGS_TABLE = "workout_logs"
EXERCISE_LOGS_TABLE = "exercise_logs"
EXERCISES_TABLE = "exercises"
PROFILES_TABLE = "profiles"
PROGRAMS_TABLE = "workout_programs"

EXERCISE_COLUMNS = "id, name, image_url, video_url, muscle_groups, equipment"
WORKOUT_COLUMNS = "id, name, division_letter, muscle_groups, duration_minutes, calories"

# Column defaults of workout_exercises
DEFAULT_SETS = 3
DEFAULT_REPS_MIN = 8
DEFAULT_REPS_MAX = 12
DEFAULT_REST_SECONDS = 60


class PersistenceError(RuntimeError):
    """Raised when a database call fails."""


class WorkoutNotFoundError(PersistenceError):
    """Raised when a workout id does not resolve to a plan."""


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _is_no_rows(error: Exception) -> bool:
    # single() raises PGRST116 when no rows match
    if getattr(error, "code", None) == "PGRST116":
        return True
    message = str(error).lower()
    return any(marker in message for marker in (
        "pgrst116",
        "(or no) rows",
        "no rows",
        "0 rows",
    ))


def _as_int(value: Any, default: int) -> int:
    """Coerce a numeric column, falling back to ``default``; clamps at 0."""
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return max(0, number)


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _as_str_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def map_workout_row(row: Dict[str, Any]) -> WorkoutDefinition:
    if not row or not row.get("id"):
        raise PersistenceError("Workout row is missing an id")
    return WorkoutDefinition(
        id=str(row["id"]),
        name=row.get("name") or "Treino",
        division_letter=row.get("division_letter"),
        muscle_groups=_as_str_list(row.get("muscle_groups")),
        duration_minutes=_as_optional_int(row.get("duration_minutes")),
        calories=_as_optional_int(row.get("calories")),
    )


def map_exercise_row(row: Optional[Dict[str, Any]], fallback_id: Optional[str] = None) -> Optional[ExerciseRef]:
    """Map an ``exercises`` row. Returns None for rows without a name."""
    if not row or not row.get("name"):
        return None
    exercise_id = row.get("id") or fallback_id
    if not exercise_id:
        return None
    return ExerciseRef(
        id=str(exercise_id),
        name=row["name"],
        image_url=row.get("image_url"),
        video_url=row.get("video_url"),
        muscle_groups=_as_str_list(row.get("muscle_groups")),
        equipment=row.get("equipment"),
    )


def map_slot_row(row: Dict[str, Any]) -> Optional[ExerciseSlot]:
    """Map a ``workout_exercises`` row joined with its exercise.

    Rows without an id or a usable exercise are rejected (None).
    """
    if not row.get("id"):
        logger.warning("Skipping workout exercise row without id: %r", row)
        return None
    exercise = map_exercise_row(row.get("exercise"), fallback_id=row.get("exercise_id"))
    if exercise is None:
        logger.warning("Skipping workout exercise %s: exercise missing", row.get("id"))
        return None

    reps_min = _as_int(row.get("reps_min"), DEFAULT_REPS_MIN)
    reps_max = max(reps_min, _as_int(row.get("reps_max"), DEFAULT_REPS_MAX))
    return ExerciseSlot(
        id=str(row["id"]),
        exercise=exercise,
        order_index=_as_int(row.get("order_index"), 0),
        sets=_as_int(row.get("sets"), DEFAULT_SETS),
        reps_min=reps_min,
        reps_max=reps_max,
        rest_seconds=_as_int(row.get("rest_seconds"), DEFAULT_REST_SECONDS),
        notes=row.get("notes") or None,
    )


def map_slot_rows(rows: List[Dict[str, Any]]) -> List[ExerciseSlot]:
    slots = [slot for slot in (map_slot_row(row) for row in rows or []) if slot]
    slots.sort(key=lambda s: s.order_index)
    positions = [s.order_index for s in slots]
    if len(set(positions)) != len(positions):
        raise PersistenceError("Workout exercises have duplicate order_index values")
    return slots


# ---------------------------------------------------------------------------
# Gateway contract
# ---------------------------------------------------------------------------


class PersistenceGateway(ABC):
    """What the session service needs from the hosted database.

    Every call is independent; there is no cross-call transaction.
    Implementations raise :class:`PersistenceError` on failure.
    """

    @abstractmethod
    def load_workout(self, workout_id: str) -> Tuple[WorkoutDefinition, List[ExerciseSlot]]:
        """Return the workout and its slots ordered by ``order_index``."""
        ...

    @abstractmethod
    def create_session_log(self, user_id: str, workout_id: str) -> str:
        """Open a session log row and return its id."""
        ...

    @abstractmethod
    def finalize_session_log(self, session_log_id: str, completed_at: datetime, duration_minutes: int) -> None:
        ...

    @abstractmethod
    def insert_set_log(self, set_log: SetLog) -> None:
        ...

    @abstractmethod
    def find_alternative_exercises(self, exercise: ExerciseRef, search: Optional[str] = None) -> List[ExerciseRef]:
        """Exercises sharing a muscle group with ``exercise`` (excluding it)."""
        ...

    @abstractmethod
    def advance_program_progress(self, user_id: str, step: int) -> Optional[int]:
        """Bump the user's current program progress. Returns the new percent."""
        ...


def filter_by_name(exercises: List[ExerciseRef], search: Optional[str]) -> List[ExerciseRef]:
    if not search:
        return exercises
    needle = search.strip().lower()
    return [e for e in exercises if needle in e.name.lower()]


# ---------------------------------------------------------------------------
# Supabase implementation
# ---------------------------------------------------------------------------


class SupabasePersistenceGateway(PersistenceGateway):
    """:class:`PersistenceGateway` backed by supabase-py."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from workout_session_api.services.supabase_client import get_supabase_client
            self._client = get_supabase_client()
        if self._client is None:
            raise PersistenceError("Supabase is not configured")
        return self._client

    def load_workout(self, workout_id: str) -> Tuple[WorkoutDefinition, List[ExerciseSlot]]:
        client = self.client
        try:
            result = (
                client.table(WORKOUT_PLANS_TABLE)
                .select(WORKOUT_COLUMNS)
                .eq("id", workout_id)
                .single()
                .execute()
            )
        except Exception as e:
            if _is_no_rows(e):
                raise WorkoutNotFoundError(f"Workout {workout_id} not found") from e
            logger.error("Error loading workout %s: %s", workout_id, e)
            raise PersistenceError(f"Could not load workout {workout_id}") from e
        if not result.data:
            raise WorkoutNotFoundError(f"Workout {workout_id} not found")
        workout = map_workout_row(result.data)

        try:
            result = (
                client.table(WORKOUT_EXERCISES_TABLE)
                .select(f"*, exercise:{EXERCISES_TABLE}({EXERCISE_COLUMNS})")
                .eq("workout_plan_id", workout_id)
                .order("order_index")
                .execute()
            )
        except Exception as e:
            logger.error("Error loading exercises for workout %s: %s", workout_id, e)
            raise PersistenceError(f"Could not load exercises for workout {workout_id}") from e

        return workout, map_slot_rows(result.data or [])

    def create_session_log(self, user_id: str, workout_id: str) -> str:
        try:
            result = self.client.table(WORKOUT_LOGS_TABLE).insert({
                "user_id": user_id,
                "workout_plan_id": workout_id,
            }).execute()
        except Exception as e:
            logger.error("Error creating workout log for %s: %s", workout_id, e)
            raise PersistenceError("Could not create workout log") from e
        if not result.data or not result.data[0].get("id"):
            raise PersistenceError("Workout log insert returned no id")
        return str(result.data[0]["id"])

    def finalize_session_log(self, session_log_id: str, completed_at: datetime, duration_minutes: int) -> None:
        try:
            self.client.table(WORKOUT_LOGS_TABLE).update({
                "completed_at": completed_at.isoformat(),
                "duration_minutes": duration_minutes,
            }).eq("id", session_log_id).execute()
        except Exception as e:
            logger.error("Error finalizing workout log %s: %s", session_log_id, e)
            raise PersistenceError("Could not finalize workout log") from e

    def insert_set_log(self, set_log: SetLog) -> None:
        try:
            self.client.table(EXERCISE_LOGS_TABLE).insert(set_log.model_dump()).execute()
        except Exception as e:
            logger.error(
                "Error logging set %d of exercise %s: %s",
                set_log.set_number, set_log.exercise_id, e,
            )
            raise PersistenceError("Could not save set") from e

    def find_alternative_exercises(self, exercise: ExerciseRef, search: Optional[str] = None) -> List[ExerciseRef]:
        if not exercise.muscle_groups:
            return []
        try:
            result = (
                self.client.table(EXERCISES_TABLE)
                .select(EXERCISE_COLUMNS)
                .neq("id", exercise.id)
                .ov("muscle_groups", exercise.muscle_groups)
                .execute()
            )
        except Exception as e:
            logger.error("Error loading alternatives for %s: %s", exercise.id, e)
            raise PersistenceError("Could not load alternative exercises") from e
        candidates = [ref for ref in (map_exercise_row(row) for row in result.data or []) if ref]
        return filter_by_name(candidates, search)

    def advance_program_progress(self, user_id: str, step: int) -> Optional[int]:
        client = self.client
        try:
            profile = (
                client.table(PROFILES_TABLE)
                .select("current_program_id")
                .eq("id", user_id)
                .single()
                .execute()
            )
            program_id = (profile.data or {}).get("current_program_id")
            if not program_id:
                return None

            program = (
                client.table(PROGRAMS_TABLE)
                .select("progress_percent")
                .eq("id", program_id)
                .single()
                .execute()
            )
            if not program.data:
                return None
            progress = min((program.data.get("progress_percent") or 0) + step, 100)

            client.table(PROGRAMS_TABLE).update(
                {"progress_percent": progress}
            ).eq("id", program_id).execute()
        except Exception as e:
            if _is_no_rows(e):
                return None
            logger.error("Error updating program progress for %s: %s", user_id, e)
            raise PersistenceError("Could not update program progress") from e
        return progress
