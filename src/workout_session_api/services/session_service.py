"""
Workout session service.

Owns the live sessions of this process and wires the state machine to the
persistence gateway:

- start:   load workout -> guard empty -> open workout log -> register
- finish:  close workout log + one insert per completed set (no rollback)
- abandon: drop the in-memory session, leaving the log open-ended

Persistence errors during finish are collected into the result instead of
raised, so the client always gets to navigate away.
"""
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, TypeVar

from workout_session_api.config import settings
from workout_session_api.models import (
    CurrentUser,
    ExerciseRef,
    FinalizeResult,
    SessionSnapshot,
    WorkoutDefinition,
)
from workout_session_api.services.persistence_gateway import (
    PersistenceError,
    PersistenceGateway,
)
from workout_session_api.services.session_machine import (
    EmptyWorkoutError,
    SessionError,
    SessionStateMachine,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionNotFoundError(SessionError):
    """Raised when a session id is unknown or belongs to another user."""


@dataclass
class LiveSession:
    """A running session and the lock guarding its machine."""
    session_id: str
    user_id: str
    workout: WorkoutDefinition
    machine: SessionStateMachine
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def snapshot(self) -> SessionSnapshot:
        return self.machine.snapshot(self.session_id, started_at=self.started_at)


class SessionRegistry:
    """In-memory store of live sessions, keyed by workout log id."""

    def __init__(self):
        self._sessions: Dict[str, LiveSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: LiveSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str, user_id: str) -> LiveSession:
        session = self._sessions.get(session_id)
        # Other users' sessions are reported as missing
        if session is None or session.user_id != user_id:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def pop(self, session_id: str, user_id: str) -> LiveSession:
        with self._lock:
            session = self.get(session_id, user_id)
            del self._sessions[session_id]
        return session

    def tick_all(self, seconds: int = 1) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            with session.lock:
                session.machine.tick(seconds)


class SessionTicker:
    """Background task ticking every live session once per second."""

    def __init__(self, registry: SessionRegistry, interval: float = 1.0):
        self.registry = registry
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Session ticker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Session ticker stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.registry.tick_all(1)


class SessionService:
    """Starts, drives and finalizes workout sessions."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        registry: Optional[SessionRegistry] = None,
        progress_step: Optional[int] = None,
        default_redirect: Optional[str] = None,
    ):
        self.gateway = gateway
        self.registry = registry if registry is not None else SessionRegistry()
        self.progress_step = settings.PROGRAM_PROGRESS_STEP if progress_step is None else progress_step
        self.default_redirect = default_redirect or settings.DEFAULT_REDIRECT

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_session(self, user: CurrentUser, workout_id: str) -> LiveSession:
        """Load a workout and open a session for ``user``.

        Raises:
            WorkoutNotFoundError / PersistenceError: the load failed.
            EmptyWorkoutError: the workout has no exercises; no log is created.
        """
        workout, slots = self.gateway.load_workout(workout_id)
        if not slots:
            raise EmptyWorkoutError(f"Workout {workout_id} has no exercises")

        machine = SessionStateMachine(workout, slots)
        session_id = self.gateway.create_session_log(user.user_id, workout_id)

        session = LiveSession(
            session_id=session_id,
            user_id=user.user_id,
            workout=workout,
            machine=machine,
        )
        self.registry.add(session)
        logger.info(
            "Session %s started: user=%s workout=%s exercises=%d",
            session_id, user.user_id, workout_id, len(slots),
        )
        return session

    def get_session(self, user: CurrentUser, session_id: str) -> LiveSession:
        return self.registry.get(session_id, user.user_id)

    def apply(
        self,
        user: CurrentUser,
        session_id: str,
        action: Callable[[SessionStateMachine], T],
    ) -> SessionSnapshot:
        """Run ``action`` against the session's machine under its lock."""
        session = self.registry.get(session_id, user.user_id)
        with session.lock:
            action(session.machine)
            return session.snapshot()

    def finish_session(
        self,
        user: CurrentUser,
        session_id: str,
        now: Optional[datetime] = None,
    ) -> FinalizeResult:
        """Write the session's results and forget it.

        Each write is independent. Failures are logged and returned in
        ``errors``; they never raise and never roll back earlier writes.
        """
        session = self.registry.pop(session_id, user.user_id)
        machine = session.machine
        completed_at = now or datetime.now(timezone.utc)
        errors: List[str] = []

        # Read everything under the lock, write without it
        with session.lock:
            duration_seconds = machine.elapsed_seconds
            duration_minutes = machine.duration_minutes
            set_logs = machine.completed_set_logs(session_id)
            finished = machine.is_finished
            exercises_completed = len(machine.completed_exercise_ids)

        try:
            self.gateway.finalize_session_log(session_id, completed_at, duration_minutes)
        except PersistenceError as e:
            logger.error("Finalize failed for session %s: %s", session_id, e)
            errors.append(str(e))

        sets_logged = 0
        for set_log in set_logs:
            try:
                self.gateway.insert_set_log(set_log)
                sets_logged += 1
            except PersistenceError as e:
                logger.error("Set log failed for session %s: %s", session_id, e)
                errors.append(str(e))

        if finished and not errors:
            self._advance_program(user)
            redirect = f"/workout/{session.workout.id}/complete"
        else:
            redirect = self.default_redirect

        logger.info(
            "Session %s finished: sets=%d duration=%ds errors=%d",
            session_id, sets_logged, duration_seconds, len(errors),
        )
        return FinalizeResult(
            session_id=session_id,
            completed_at=completed_at,
            duration_seconds=duration_seconds,
            duration_minutes=duration_minutes,
            sets_logged=sets_logged,
            exercises_completed=exercises_completed,
            total_exercises=len(machine.slots),
            calories=session.workout.calories,
            errors=errors,
            redirect=redirect,
        )

    def abandon_session(self, user: CurrentUser, session_id: str) -> None:
        """Drop the session without finalizing; its log stays open-ended."""
        session = self.registry.pop(session_id, user.user_id)
        logger.info(
            "Session %s abandoned after %ds (%d/%d sets)",
            session_id,
            session.machine.elapsed_seconds,
            session.machine.completed_set_count,
            session.machine.total_sets,
        )

    # ------------------------------------------------------------------
    # Substitution
    # ------------------------------------------------------------------

    def find_alternatives(
        self,
        user: CurrentUser,
        session_id: str,
        search: Optional[str] = None,
    ) -> List[ExerciseRef]:
        session = self.registry.get(session_id, user.user_id)
        current = session.machine.current_slot.exercise
        return self.gateway.find_alternative_exercises(current, search)

    def substitute(self, user: CurrentUser, session_id: str, exercise_id: str) -> SessionSnapshot:
        """Swap the current slot's exercise for one of its alternatives.

        Raises:
            ValueError: ``exercise_id`` is not an alternative for the slot.
        """
        candidates = self.find_alternatives(user, session_id)
        replacement = next((c for c in candidates if c.id == exercise_id), None)
        if replacement is None:
            raise ValueError(f"Exercise {exercise_id} is not an alternative for this slot")
        return self.apply(user, session_id, lambda m: m.substitute_exercise(replacement))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _advance_program(self, user: CurrentUser) -> None:
        try:
            progress = self.gateway.advance_program_progress(user.user_id, self.progress_step)
        except PersistenceError as e:
            logger.error("Program progress update failed for %s: %s", user.user_id, e)
            return
        if progress is not None:
            logger.info("Program progress for %s is now %d%%", user.user_id, progress)
