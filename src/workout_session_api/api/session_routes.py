"""API routes for live workout sessions."""
import logging
from typing import Callable, List, Literal, Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from workout_session_api.auth import get_current_user
from workout_session_api.models import (
    CurrentUser,
    ExerciseRef,
    FinalizeResult,
    SessionSnapshot,
)
from workout_session_api.services.persistence_gateway import (
    PersistenceError,
    SupabasePersistenceGateway,
    WorkoutNotFoundError,
)
from workout_session_api.services.session_machine import (
    EmptyWorkoutError,
    InvalidTransitionError,
)
from workout_session_api.services.session_service import (
    SessionNotFoundError,
    SessionService,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

router = APIRouter(prefix="/sessions", tags=["Sessions"])

_service: Optional[SessionService] = None


def get_session_service() -> SessionService:
    """Process-wide session service backed by Supabase."""
    global _service
    if _service is None:
        _service = SessionService(SupabasePersistenceGateway())
    return _service


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class StartSessionRequest(BaseModel):
    workout_id: str


class StartSessionResponse(BaseModel):
    status: Literal["started", "empty"]
    session: Optional[SessionSnapshot] = None
    message: Optional[str] = None


class SetRef(BaseModel):
    slot_index: int
    set_index: int


class EditSetRequest(SetRef):
    reps: Optional[int] = None  # omitted -> keep current value
    weight: Optional[float] = None


class AdjustRestRequest(BaseModel):
    delta_seconds: int


class SelectExerciseRequest(BaseModel):
    index: int


class SubstituteRequest(BaseModel):
    exercise_id: str


class AlternativesResponse(BaseModel):
    exercises: List[ExerciseRef] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _handle(call: Callable[[], T]) -> T:
    """Run a service call, translating session errors to HTTP errors."""
    try:
        return call()
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (IndexError, ValueError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except PersistenceError as e:
        logger.error("Persistence error: %s", e)
        raise HTTPException(status_code=502, detail=str(e))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("", response_model=StartSessionResponse)
def start_session(
    payload: StartSessionRequest,
    response: Response,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """
    Start a session for a workout.

    Returns 201 with the session snapshot, or 200 with ``status: "empty"``
    when the workout has no exercises (nothing is written in that case).
    """
    try:
        session = service.start_session(user, payload.workout_id)
    except EmptyWorkoutError:
        return StartSessionResponse(
            status="empty",
            message="Este treino ainda não tem exercícios",
        )
    except WorkoutNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        logger.error("Could not start session for workout %s: %s", payload.workout_id, e)
        raise HTTPException(status_code=502, detail="Não foi possível carregar o treino")

    response.status_code = 201
    return StartSessionResponse(status="started", session=session.snapshot())


@router.get("/{session_id}", response_model=SessionSnapshot)
def get_session(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.get_session(user, session_id).snapshot())


@router.post("/{session_id}/finish", response_model=FinalizeResult)
def finish_session(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    """Persist results. Partial persistence failures are listed in ``errors``."""
    return _handle(lambda: service.finish_session(user, session_id))


@router.delete("/{session_id}", status_code=204)
def abandon_session(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    _handle(lambda: service.abandon_session(user, session_id))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Sets
# ---------------------------------------------------------------------------


@router.post("/{session_id}/complete-set", response_model=SessionSnapshot)
def complete_set(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.apply(user, session_id, lambda m: m.complete_set()))


@router.post("/{session_id}/sets/toggle", response_model=SessionSnapshot)
def toggle_set(
    session_id: str,
    payload: SetRef,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.apply(
        user, session_id, lambda m: m.toggle_set(payload.slot_index, payload.set_index)
    ))


@router.patch("/{session_id}/sets", response_model=SessionSnapshot)
def edit_set(
    session_id: str,
    payload: EditSetRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.apply(
        user,
        session_id,
        lambda m: m.edit_set(payload.slot_index, payload.set_index, payload.reps, payload.weight),
    ))


# ---------------------------------------------------------------------------
# Rest and clock
# ---------------------------------------------------------------------------


@router.post("/{session_id}/rest/skip", response_model=SessionSnapshot)
def skip_rest(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.apply(user, session_id, lambda m: m.skip_rest()))


@router.post("/{session_id}/rest/adjust", response_model=SessionSnapshot)
def adjust_rest(
    session_id: str,
    payload: AdjustRestRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.apply(
        user, session_id, lambda m: m.adjust_rest(payload.delta_seconds)
    ))


@router.post("/{session_id}/pause", response_model=SessionSnapshot)
def pause_session(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.apply(user, session_id, lambda m: m.pause()))


@router.post("/{session_id}/resume", response_model=SessionSnapshot)
def resume_session(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.apply(user, session_id, lambda m: m.resume()))


# ---------------------------------------------------------------------------
# Exercise navigation and substitution
# ---------------------------------------------------------------------------


@router.post("/{session_id}/select", response_model=SessionSnapshot)
def select_exercise(
    session_id: str,
    payload: SelectExerciseRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.apply(
        user, session_id, lambda m: m.select_exercise(payload.index)
    ))


@router.get("/{session_id}/alternatives", response_model=AlternativesResponse)
def list_alternatives(
    session_id: str,
    search: Optional[str] = Query(None, description="Case-insensitive name filter"),
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    exercises = _handle(lambda: service.find_alternatives(user, session_id, search))
    return AlternativesResponse(exercises=exercises)


@router.post("/{session_id}/substitute", response_model=SessionSnapshot)
def substitute_exercise(
    session_id: str,
    payload: SubstituteRequest,
    user: CurrentUser = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
):
    return _handle(lambda: service.substitute(user, session_id, payload.exercise_id))
