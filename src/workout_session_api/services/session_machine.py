"""
Workout session state machine.

Drives a user through the ordered exercise slots of a workout:

    active --complete set--> resting --countdown/skip--> active --...--> finished

The machine is purely in-memory. Loading the workout and writing the logs is
the job of the session service; nothing here performs I/O.

Policies:
- Completing the last set of the last slot finishes the session directly,
  without a rest phase.
- The elapsed clock only runs while active and not paused; it stops during
  rest.
- Slots with zero target sets are never visited; they count as completed
  as soon as the cursor would reach them.
- Set logs come out in the order the sets were completed.
"""
import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from workout_session_api.models import (
    ExerciseRef,
    ExerciseSlot,
    SessionPhase,
    SessionSnapshot,
    SessionStateSnapshot,
    SetLog,
    SetRecord,
    SlotSnapshot,
    WorkoutDefinition,
)
from workout_session_api.services.rest_countdown import RestCountdown

logger = logging.getLogger(__name__)


class SessionError(RuntimeError):
    """Base class for session errors."""


class InvalidTransitionError(SessionError):
    """Raised when an operation is not allowed in the current phase."""


class EmptyWorkoutError(SessionError):
    """Raised when a workout has no exercises to play back."""


class SessionStateMachine:
    """In-memory progress tracker for one live workout session."""

    def __init__(self, workout: WorkoutDefinition, slots: Iterable[ExerciseSlot]):
        ordered = sorted(slots, key=lambda s: s.order_index)
        if not ordered:
            raise EmptyWorkoutError(f"Workout {workout.id} has no exercises")

        positions = [s.order_index for s in ordered]
        if len(set(positions)) != len(positions):
            raise ValueError(f"Duplicate order_index in workout {workout.id}")
        if not any(s.sets for s in ordered):
            raise EmptyWorkoutError(f"Workout {workout.id} has no sets to perform")

        self.workout = workout
        # Copies, so substitutions never leak into the caller's definition
        self.slots: List[ExerciseSlot] = [s.model_copy(deep=True) for s in ordered]
        self.records: List[List[SetRecord]] = [
            [SetRecord.for_slot(slot) for _ in range(slot.sets)] for slot in self.slots
        ]

        self.phase = SessionPhase.active
        self.current_set_index = 0
        self.elapsed_seconds = 0
        self.is_paused = False
        self.completed_exercise_ids: List[str] = []
        self._rest: Optional[RestCountdown] = None
        # (slot_index, set_index) of completed sets, oldest first
        self._completion_order: List[Tuple[int, int]] = []
        self.current_exercise_index = self._next_playable(0)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def current_slot(self) -> ExerciseSlot:
        return self.slots[self.current_exercise_index]

    @property
    def is_resting(self) -> bool:
        return self.phase is SessionPhase.resting

    @property
    def is_finished(self) -> bool:
        return self.phase is SessionPhase.finished

    @property
    def rest_remaining_seconds(self) -> int:
        return self._rest.remaining if self._rest else 0

    @property
    def rest_total_seconds(self) -> int:
        return self._rest.total if self._rest else 0

    @property
    def total_sets(self) -> int:
        return sum(len(r) for r in self.records)

    @property
    def completed_set_count(self) -> int:
        return sum(1 for records in self.records for r in records if r.completed)

    @property
    def duration_minutes(self) -> int:
        """Elapsed time rounded up to whole minutes."""
        return math.ceil(self.elapsed_seconds / 60)

    @property
    def progress_percent(self) -> float:
        if self.is_finished:
            return 100.0
        sets = self.current_slot.sets or 1
        position = self.current_exercise_index + self.current_set_index / sets
        return position / len(self.slots) * 100

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def complete_set(self) -> SessionPhase:
        """Mark the current set done and move the cursor forward."""
        self._require(SessionPhase.active, "complete a set")

        records = self.records[self.current_exercise_index]
        if self.current_set_index < len(records):
            self._set_completed(self.current_exercise_index, self.current_set_index, True)
        self._advance()
        return self.phase

    def toggle_set(self, slot_index: int, set_index: int) -> SessionPhase:
        """Flip the completion flag of any set from the exercise list."""
        if self.is_finished:
            raise InvalidTransitionError("Cannot change sets of a finished session")
        record = self._record(slot_index, set_index)

        is_cursor = (
            slot_index == self.current_exercise_index
            and set_index == self.current_set_index
        )
        if is_cursor and not record.completed and self.phase is SessionPhase.active:
            return self.complete_set()

        slot = self.slots[slot_index]
        self._set_completed(slot_index, set_index, not record.completed)
        if record.completed:
            if all(r.completed for r in self.records[slot_index]):
                self._mark_slot_completed(slot)
            self._enter_rest(slot.rest_seconds)
        elif slot.id in self.completed_exercise_ids:
            self.completed_exercise_ids.remove(slot.id)
        return self.phase

    def skip_rest(self) -> None:
        self._require(SessionPhase.resting, "skip rest")
        self._rest.skip()
        self._leave_rest()

    def adjust_rest(self, delta_seconds: int) -> int:
        self._require(SessionPhase.resting, "adjust rest")
        return self._rest.adjust(delta_seconds)

    def tick(self, seconds: int = 1) -> None:
        """Advance the session clocks by ``seconds``."""
        if seconds < 0:
            raise ValueError("Cannot tick backwards")
        if self.phase is SessionPhase.resting:
            if self._rest.tick(seconds):
                logger.debug("Rest over, back to %s", self.current_slot.exercise.name)
                self._leave_rest()
        elif self.phase is SessionPhase.active and not self.is_paused:
            self.elapsed_seconds += seconds

    def pause(self) -> None:
        if self.is_finished:
            raise InvalidTransitionError("Cannot pause a finished session")
        self.is_paused = True

    def resume(self) -> None:
        if self.is_finished:
            raise InvalidTransitionError("Cannot resume a finished session")
        self.is_paused = False

    def select_exercise(self, index: int) -> ExerciseSlot:
        """Jump to another slot. Its records are kept as they are."""
        self._require(SessionPhase.active, "select an exercise")
        if not 0 <= index < len(self.slots):
            raise IndexError(f"Exercise index {index} out of range")
        if self.slots[index].sets == 0:
            raise ValueError(f"Exercise {index} has no sets")
        self.current_exercise_index = index
        self.current_set_index = 0
        return self.current_slot

    def substitute_exercise(self, exercise: ExerciseRef) -> ExerciseSlot:
        """Swap the exercise of the current slot for an alternative."""
        if self.is_finished:
            raise InvalidTransitionError("Cannot substitute in a finished session")
        index = self.current_exercise_index
        previous = self.slots[index].exercise
        self.slots[index] = self.slots[index].model_copy(update={"exercise": exercise})
        logger.info(
            "Substituted %s -> %s in slot %d", previous.name, exercise.name, index
        )
        return self.slots[index]

    def edit_set(
        self,
        slot_index: int,
        set_index: int,
        reps: Optional[int] = None,
        weight: Optional[float] = None,
    ) -> SetRecord:
        """Overwrite reps and/or weight. The completion flag is left alone."""
        if self.is_finished:
            raise InvalidTransitionError("Cannot edit sets of a finished session")
        record = self._record(slot_index, set_index)
        if reps is not None and reps < 0:
            raise ValueError("Reps cannot be negative")
        if weight is not None and weight < 0:
            raise ValueError("Weight cannot be negative")
        if reps is not None:
            record.reps = int(reps)
        if weight is not None:
            record.weight = float(weight)
        return record

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def completed_set_logs(self, session_log_id: str) -> List[SetLog]:
        """Log rows for every completed set, in the order they were completed."""
        logs = []
        for slot_index, set_index in self._completion_order:
            record = self.records[slot_index][set_index]
            logs.append(SetLog(
                workout_log_id=session_log_id,
                exercise_id=self.slots[slot_index].exercise.id,
                set_number=set_index + 1,
                reps=record.reps,
                weight_kg=record.weight,
                completed=True,
            ))
        return logs

    def snapshot(self, session_id: str, started_at: Optional[datetime] = None) -> SessionSnapshot:
        state = SessionStateSnapshot(
            phase=self.phase,
            current_exercise_index=self.current_exercise_index,
            current_set_index=self.current_set_index,
            elapsed_seconds=self.elapsed_seconds,
            is_resting=self.is_resting,
            is_paused=self.is_paused,
            rest_remaining_seconds=self.rest_remaining_seconds,
            rest_total_seconds=self.rest_total_seconds,
            rest_progress_percent=round(self._rest.progress, 2) if self._rest else 0.0,
            completed_exercise_ids=list(self.completed_exercise_ids),
            progress_percent=round(self.progress_percent, 2),
        )
        slots = [
            SlotSnapshot(
                index=i,
                slot=slot,
                reps_label=slot.reps_label,
                records=[r.model_copy() for r in records],
                is_active=i == self.current_exercise_index and not self.is_finished,
                is_completed=slot.id in self.completed_exercise_ids,
            )
            for i, (slot, records) in enumerate(zip(self.slots, self.records))
        ]
        return SessionSnapshot(
            session_id=session_id,
            workout=self.workout,
            started_at=started_at,
            state=state,
            slots=slots,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, phase: SessionPhase, action: str) -> None:
        if self.phase is not phase:
            raise InvalidTransitionError(
                f"Cannot {action} while {self.phase.value} (needs {phase.value})"
            )

    def _record(self, slot_index: int, set_index: int) -> SetRecord:
        if not 0 <= slot_index < len(self.slots):
            raise IndexError(f"Exercise index {slot_index} out of range")
        records = self.records[slot_index]
        if not 0 <= set_index < len(records):
            raise IndexError(f"Set index {set_index} out of range")
        return records[set_index]

    def _advance(self) -> None:
        slot = self.current_slot
        if self.current_set_index < slot.sets - 1:
            self.current_set_index += 1
            self._enter_rest(slot.rest_seconds)
            return

        self._mark_slot_completed(slot)
        next_index = self._next_playable(self.current_exercise_index + 1)
        if next_index is None:
            self._rest = None
            self.phase = SessionPhase.finished
            logger.info("Workout %s finished after %ss", self.workout.id, self.elapsed_seconds)
            return
        self.current_exercise_index = next_index
        self.current_set_index = 0
        self._enter_rest(slot.rest_seconds)

    def _next_playable(self, start: int) -> Optional[int]:
        """First slot from ``start`` with sets to do; zero-set slots on the way count as done."""
        for index in range(start, len(self.slots)):
            if self.slots[index].sets:
                return index
            self._mark_slot_completed(self.slots[index])
        return None

    def _set_completed(self, slot_index: int, set_index: int, completed: bool) -> None:
        self.records[slot_index][set_index].completed = completed
        key = (slot_index, set_index)
        if key in self._completion_order:
            self._completion_order.remove(key)
        if completed:
            self._completion_order.append(key)

    def _mark_slot_completed(self, slot: ExerciseSlot) -> None:
        if slot.id not in self.completed_exercise_ids:
            self.completed_exercise_ids.append(slot.id)

    def _enter_rest(self, seconds: int) -> None:
        if seconds <= 0:
            self._leave_rest()
            return
        self._rest = RestCountdown(seconds)
        self.phase = SessionPhase.resting

    def _leave_rest(self) -> None:
        self._rest = None
        self.phase = SessionPhase.active
