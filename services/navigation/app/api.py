import asyncio
import functools
import logging

from fastapi import APIRouter, HTTPException, status

from . import deps, planner, schemas, sync
from .orchestrator import ErrorKind, NavigationOrchestrator, NavigationUpdate
from .repository import SessionRepository
from .route import RouteInvariantError
from .session import plan_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/navigation")


def build_orchestrator(session, settings: deps.Settings) -> NavigationOrchestrator:
    return NavigationOrchestrator(
        session,
        planner=planner.get_planner(),
        publisher=sync.get_publisher(settings),
        announcer=sync.get_announcer(settings),
        store=SessionRepository() if settings.persist_sessions else None,
        options=deps.orchestrator_options(settings),
        on_finished=functools.partial(
            deps.retire_orchestrator, delay_s=settings.session_retention_s
        ),
    )


def _orchestrator_or_404(session_id: str) -> NavigationOrchestrator:
    orchestrator = deps.get_orchestrator(session_id)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Session not found"
        )
    return orchestrator


def _command_result(update: NavigationUpdate) -> schemas.UpdateOut:
    if not update.accepted:
        if update.error and update.error.kind is ErrorKind.PLANNING_FAILED:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail=update.error.message
            )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=update.advisory.value if update.advisory else "rejected",
        )
    return schemas.UpdateOut.from_update(update)


@router.post("/sessions", response_model=schemas.UpdateOut)
async def start_session(data: schemas.StartRequest) -> schemas.UpdateOut:
    settings = deps.get_settings()
    if data.route is not None:
        try:
            route = data.route.to_route()
        except RouteInvariantError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
            ) from exc
    else:
        if data.origin is None or data.destination is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Either route or origin and destination are required",
            )
        route_planner = planner.get_planner()
        if route_planner is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Route planner is not configured",
            )
        try:
            route = await asyncio.to_thread(
                route_planner.compute_route,
                data.origin.to_coordinate(),
                data.destination.to_coordinate(),
                data.mode,
            )
        except planner.PlanningError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
            ) from exc

    session = plan_session(
        route, user_id=data.user_id, group_session_id=data.group_session_id
    )
    orchestrator = build_orchestrator(session, settings)
    deps.register_orchestrator(orchestrator)
    update = await orchestrator.start()
    logger.info("Navigation session %s started", session.id)
    return _command_result(update)


@router.get("/sessions/{session_id}", response_model=schemas.SessionOut)
async def get_session(session_id: str) -> schemas.SessionOut:
    orchestrator = _orchestrator_or_404(session_id)
    return schemas.SessionOut.from_snapshot(orchestrator.snapshot())


@router.post("/sessions/{session_id}/fixes", response_model=schemas.UpdateOut)
async def post_fix(session_id: str, data: schemas.FixRequest) -> schemas.UpdateOut:
    orchestrator = _orchestrator_or_404(session_id)
    update = await orchestrator.process_fix(data.to_fix())
    return schemas.UpdateOut.from_update(update)


@router.post("/sessions/{session_id}/pause", response_model=schemas.UpdateOut)
async def pause_session(session_id: str) -> schemas.UpdateOut:
    orchestrator = _orchestrator_or_404(session_id)
    return _command_result(await orchestrator.pause())


@router.post("/sessions/{session_id}/resume", response_model=schemas.UpdateOut)
async def resume_session(session_id: str) -> schemas.UpdateOut:
    orchestrator = _orchestrator_or_404(session_id)
    return _command_result(await orchestrator.resume())


@router.post("/sessions/{session_id}/stop", response_model=schemas.UpdateOut)
async def stop_session(session_id: str) -> schemas.UpdateOut:
    orchestrator = _orchestrator_or_404(session_id)
    return _command_result(await orchestrator.stop())


@router.post("/sessions/{session_id}/recalculate", response_model=schemas.UpdateOut)
async def recalculate_session(
    session_id: str, data: schemas.RecalculateRequest | None = None
) -> schemas.UpdateOut:
    orchestrator = _orchestrator_or_404(session_id)
    origin = data.origin.to_coordinate() if data and data.origin else None
    return _command_result(await orchestrator.recalculate(origin))
