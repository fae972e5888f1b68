"""
Test fixtures for workout-session-api.

Provides an in-memory persistence gateway and sample workouts so the
session core and routes can be tested offline and deterministically.
"""

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

# Make src/ importable so tests can do `import workout_session_api...`
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# No background ticking in tests; tests drive tick() explicitly
os.environ.setdefault("SESSION_TICK_ENABLED", "false")

from workout_session_api.auth import get_current_user
from workout_session_api.main import app
from workout_session_api.api.session_routes import get_session_service
from workout_session_api.models import (
    CurrentUser,
    ExerciseRef,
    ExerciseSlot,
    SetLog,
    WorkoutDefinition,
)
from workout_session_api.services.persistence_gateway import (
    PersistenceError,
    PersistenceGateway,
    WorkoutNotFoundError,
    filter_by_name,
)
from workout_session_api.services.session_service import SessionService


TEST_USER_ID = "test-user-123"


# ---------------------------------------------------------------------------
# Fake gateway
# ---------------------------------------------------------------------------


class FakeGateway(PersistenceGateway):
    """In-memory PersistenceGateway that records every write.

    ``fail`` maps an operation name to the exception it should raise.
    """

    def __init__(self):
        self.workouts: Dict[str, Tuple[WorkoutDefinition, List[ExerciseSlot]]] = {}
        self.library: List[ExerciseRef] = []
        self.session_logs: Dict[str, dict] = {}
        self.set_logs: List[SetLog] = []
        self.program_progress: Dict[str, int] = {}
        self.fail: Dict[str, Exception] = {}
        self.fail_set_numbers: set = set()
        self._next_id = 1

    def add_workout(self, workout: WorkoutDefinition, slots: List[ExerciseSlot]) -> None:
        self.workouts[workout.id] = (workout, slots)

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail:
            raise self.fail[operation]

    def load_workout(self, workout_id: str):
        self._maybe_fail("load_workout")
        if workout_id not in self.workouts:
            raise WorkoutNotFoundError(f"Workout {workout_id} not found")
        workout, slots = self.workouts[workout_id]
        return workout, sorted(slots, key=lambda s: s.order_index)

    def create_session_log(self, user_id: str, workout_id: str) -> str:
        self._maybe_fail("create_session_log")
        log_id = f"log-{self._next_id}"
        self._next_id += 1
        self.session_logs[log_id] = {
            "user_id": user_id,
            "workout_plan_id": workout_id,
            "completed_at": None,
            "duration_minutes": None,
        }
        return log_id

    def finalize_session_log(self, session_log_id: str, completed_at: datetime, duration_minutes: int) -> None:
        self._maybe_fail("finalize_session_log")
        self.session_logs[session_log_id].update(
            completed_at=completed_at, duration_minutes=duration_minutes
        )

    def insert_set_log(self, set_log: SetLog) -> None:
        self._maybe_fail("insert_set_log")
        if set_log.set_number in self.fail_set_numbers:
            raise PersistenceError(f"Could not save set {set_log.set_number}")
        self.set_logs.append(set_log)

    def find_alternative_exercises(self, exercise: ExerciseRef, search: Optional[str] = None):
        self._maybe_fail("find_alternative_exercises")
        groups = set(exercise.muscle_groups)
        candidates = [
            e for e in self.library
            if e.id != exercise.id and groups & set(e.muscle_groups)
        ]
        return filter_by_name(candidates, search)

    def advance_program_progress(self, user_id: str, step: int) -> Optional[int]:
        self._maybe_fail("advance_program_progress")
        if user_id not in self.program_progress:
            return None
        self.program_progress[user_id] = min(self.program_progress[user_id] + step, 100)
        return self.program_progress[user_id]


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------


def make_exercise(exercise_id: str, name: str, groups=("Peito",)) -> ExerciseRef:
    return ExerciseRef(id=exercise_id, name=name, muscle_groups=list(groups), equipment="Barra")


def make_slot(
    slot_id: str,
    exercise: ExerciseRef,
    order_index: int,
    sets: int = 3,
    reps_min: int = 8,
    reps_max: int = 12,
    rest_seconds: int = 60,
) -> ExerciseSlot:
    return ExerciseSlot(
        id=slot_id,
        exercise=exercise,
        order_index=order_index,
        sets=sets,
        reps_min=reps_min,
        reps_max=reps_max,
        rest_seconds=rest_seconds,
    )


@pytest.fixture
def bench() -> ExerciseRef:
    return make_exercise("ex-bench", "Supino Reto com Barra")


@pytest.fixture
def chest_workout() -> WorkoutDefinition:
    return WorkoutDefinition(
        id="w-chest",
        name="Treino de Peito",
        division_letter="A",
        muscle_groups=["Peito", "Tríceps"],
        duration_minutes=45,
        calories=380,
    )


@pytest.fixture
def chest_slots() -> List[ExerciseSlot]:
    """Three slots: 4 sets/90s, 3 sets/60s, 3 sets/45s."""
    return [
        make_slot("we-1", make_exercise("ex-bench", "Supino Reto com Barra"), 0, sets=4, rest_seconds=90),
        make_slot("we-2", make_exercise("ex-incline", "Supino Inclinado com Halteres"), 1,
                  sets=3, reps_min=10, rest_seconds=60),
        make_slot("we-3", make_exercise("ex-fly", "Crucifixo na Máquina"), 2,
                  sets=3, reps_min=12, reps_max=15, rest_seconds=45),
    ]


@pytest.fixture
def single_slot_workout():
    """One exercise, 3 sets, 30s rest."""
    workout = WorkoutDefinition(id="w-single", name="Rosca", muscle_groups=["Bíceps"])
    slots = [make_slot("we-curl", make_exercise("ex-curl", "Rosca Direta", ("Bíceps",)), 0,
                       sets=3, rest_seconds=30)]
    return workout, slots


@pytest.fixture
def fake_gateway(chest_workout, chest_slots, single_slot_workout) -> FakeGateway:
    gateway = FakeGateway()
    gateway.add_workout(chest_workout, chest_slots)
    gateway.add_workout(*single_slot_workout)
    gateway.add_workout(WorkoutDefinition(id="w-empty", name="Vazio"), [])
    gateway.library = [
        make_exercise("ex-bench", "Supino Reto com Barra"),
        make_exercise("ex-incline", "Supino Inclinado com Halteres"),
        make_exercise("ex-pushup", "Flexão de Braço"),
        make_exercise("ex-crossover", "Crossover na Polia", ("Peito", "Ombros")),
        make_exercise("ex-squat", "Agachamento Livre", ("Quadríceps",)),
    ]
    return gateway


@pytest.fixture
def user() -> CurrentUser:
    return CurrentUser(user_id=TEST_USER_ID)


@pytest.fixture
def service(fake_gateway) -> SessionService:
    return SessionService(fake_gateway, progress_step=3, default_redirect="/dashboard")


# ---------------------------------------------------------------------------
# Test client
# ---------------------------------------------------------------------------


async def mock_get_current_user() -> CurrentUser:
    """Mock auth dependency that returns the test user."""
    return CurrentUser(user_id=TEST_USER_ID)


@pytest.fixture
def client(service) -> TestClient:
    """Per-test client wired to a fresh service over the fake gateway."""
    app.dependency_overrides[get_current_user] = mock_get_current_user
    app.dependency_overrides[get_session_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()
