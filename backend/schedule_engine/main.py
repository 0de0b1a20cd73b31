"""
FastAPI application with REST endpoints and a WebSocket change feed.
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .engine.scheduler import ScheduleService
from .exceptions import (
    CycleDetectedError,
    InvalidDateRangeError,
    ProjectNotFoundError,
    SchedulingError,
    TaskNotFoundError,
)
from .logging_config import get_logger, setup_logging
from .middleware import ChangeFeedLogger, add_logging_middleware
from .models import (
    ChangeEvent,
    CreateProjectRequest,
    CreateTaskRequest,
    CriticalPathResult,
    EditResult,
    HealthResponse,
    LevelingProposal,
    Project,
    ReconcileResult,
    RefreshResult,
    ScheduleRequest,
    Task,
    TaskChanges,
    UpdateProjectRequest,
)
from .store import InMemoryTaskStore

settings = get_settings()
logger = get_logger(__name__)

store = InMemoryTaskStore()
service = ScheduleService(store, settings)


def get_service() -> ScheduleService:
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    setup_logging()
    logger.info(
        "Schedule engine starting",
        extra={'extra_data': {
            'host': settings.host,
            'port': settings.port,
            'cors_origins': settings.cors_origins_list,
            'daily_capacity_hours': settings.daily_capacity_hours,
            'max_cascade_iterations': settings.max_cascade_iterations,
        }}
    )
    yield
    logger.info("Schedule engine shutting down")


app = FastAPI(
    title="Schedule Engine API",
    description="Dependency-driven task scheduling: reconciliation, cascades, critical path and leveling",
    version="1.0.0",
    lifespan=lifespan
)

# Add logging middleware (must be added before CORS)
add_logging_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CycleDetectedError)
async def cycle_detected_handler(request, exc: CycleDetectedError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "cycle": exc.chain})


def to_http_exception(e: SchedulingError) -> HTTPException:
    if isinstance(e, (TaskNotFoundError, ProjectNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidDateRangeError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# WebSocket connection manager for project change feeds
class ConnectionManager:
    def __init__(self):
        self.active_connections: dict[str, dict[str, WebSocket]] = {}
        self._logger = get_logger(f"{__name__}.ConnectionManager")

    async def connect(self, websocket: WebSocket, project_id: str, client_id: str):
        await websocket.accept()
        self.active_connections.setdefault(project_id, {})[client_id] = websocket
        self._logger.info(
            "WebSocket connected",
            extra={'extra_data': {
                'project_id': project_id,
                'client_id': client_id,
                'project_connections': len(self.active_connections[project_id]),
            }}
        )

    def disconnect(self, project_id: str, client_id: str):
        connections = self.active_connections.get(project_id, {})
        if client_id in connections:
            del connections[client_id]
            if not connections:
                self.active_connections.pop(project_id, None)
            self._logger.info(
                "WebSocket disconnected",
                extra={'extra_data': {'project_id': project_id, 'client_id': client_id}}
            )

    async def send_event(self, project_id: str, client_id: str, event: ChangeEvent):
        websocket = self.active_connections.get(project_id, {}).get(client_id)
        if websocket is None:
            return
        try:
            await websocket.send_json({
                "type": "change",
                "data": event.model_dump(by_alias=True, mode="json"),
            })
        except Exception as e:
            self._logger.warning(
                "Failed to send change event to client",
                extra={'extra_data': {'client_id': client_id, 'error': str(e)}}
            )
            self.disconnect(project_id, client_id)


manager = ConnectionManager()


# --- REST API Endpoints ---

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "schedule-engine"}


# Stateless analysis over a posted snapshot

@app.post("/api/schedule/reconcile", response_model=ReconcileResult)
async def reconcile_tasks(request: ScheduleRequest, service: ScheduleService = Depends(get_service)):
    """
    Reconcile a task snapshot without persisting anything.

    Dates are only overridden where a predecessor or constraint is violated,
    or where an ASAP task can start earlier.
    """
    logger.info(
        "Reconciling snapshot",
        extra={'extra_data': {'task_count': len(request.tasks), 'include_weekends': request.include_weekends}}
    )
    return service.reconcile_snapshot(request.tasks, request.include_weekends)


@app.post("/api/schedule/critical-path", response_model=CriticalPathResult)
async def critical_path(request: ScheduleRequest, service: ScheduleService = Depends(get_service)):
    return service.compute_critical_path(request.tasks, request.include_weekends)


@app.post("/api/schedule/leveling", response_model=list[LevelingProposal])
async def leveling_proposals(request: ScheduleRequest, service: ScheduleService = Depends(get_service)):
    """Advisory shifts that relieve over-allocated owners. Nothing is applied."""
    return service.compute_leveling_proposals(request.tasks, None, request.include_weekends)


@app.post("/api/schedule/health", response_model=HealthResponse)
async def schedule_health(request: ScheduleRequest, service: ScheduleService = Depends(get_service)):
    return service.schedule_health(request.tasks, request.include_weekends)


# Stored projects

@app.post("/api/projects", response_model=Project, status_code=201)
async def create_project(request: CreateProjectRequest, service: ScheduleService = Depends(get_service)):
    return await service.create_project(request)


@app.get("/api/projects/{project_id}", response_model=Project)
async def get_project(project_id: str, service: ScheduleService = Depends(get_service)):
    try:
        return await service.get_project(project_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@app.patch("/api/projects/{project_id}", response_model=Project)
async def update_project(
    project_id: str,
    request: UpdateProjectRequest,
    service: ScheduleService = Depends(get_service),
):
    """Rename a project or switch its calendar policy. A policy switch reschedules every task."""
    try:
        return await service.update_project(project_id, request)
    except SchedulingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Project update failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/projects/{project_id}/tasks", response_model=list[Task])
async def list_tasks(project_id: str, service: ScheduleService = Depends(get_service)):
    try:
        return await service.list_tasks(project_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@app.post("/api/projects/{project_id}/tasks", response_model=Task, status_code=201)
async def create_task(
    project_id: str,
    request: CreateTaskRequest,
    service: ScheduleService = Depends(get_service),
):
    try:
        return await service.create_task(project_id, request)
    except SchedulingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Task creation failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.patch("/api/projects/{project_id}/tasks/{task_id}", response_model=EditResult)
async def edit_task(
    project_id: str,
    task_id: str,
    changes: TaskChanges,
    service: ScheduleService = Depends(get_service),
):
    """
    Apply a field-level edit and cascade it.

    Returns every task whose stored record changed, plus advisory
    constraint violations and any anomalies met on the way.
    A dependency edit that would create a loop is rejected with 409.
    """
    try:
        return await service.apply_edit(project_id, task_id, changes)
    except CycleDetectedError:
        raise
    except SchedulingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Task edit failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.delete("/api/projects/{project_id}/tasks/{task_id}")
async def delete_task(project_id: str, task_id: str, service: ScheduleService = Depends(get_service)):
    try:
        removed = await service.remove_task(project_id, task_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    return {"removedIds": removed}


@app.post("/api/projects/{project_id}/refresh", response_model=RefreshResult)
async def refresh_project(project_id: str, service: ScheduleService = Depends(get_service)):
    """Reconcile the whole project and persist what changed."""
    try:
        return await service.refresh_schedule(project_id)
    except SchedulingError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Schedule refresh failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/api/projects/{project_id}/baseline", response_model=list[Task])
async def set_baseline(project_id: str, service: ScheduleService = Depends(get_service)):
    try:
        return await service.set_baseline(project_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@app.delete("/api/projects/{project_id}/baseline", response_model=list[Task])
async def clear_baseline(project_id: str, service: ScheduleService = Depends(get_service)):
    try:
        return await service.clear_baseline(project_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@app.get("/api/projects/{project_id}/critical-path", response_model=CriticalPathResult)
async def project_critical_path(project_id: str, service: ScheduleService = Depends(get_service)):
    try:
        return await service.project_critical_path(project_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@app.get("/api/projects/{project_id}/leveling", response_model=list[LevelingProposal])
async def project_leveling(project_id: str, service: ScheduleService = Depends(get_service)):
    try:
        return await service.project_leveling(project_id)
    except SchedulingError as e:
        raise to_http_exception(e)


@app.get("/api/projects/{project_id}/health", response_model=HealthResponse)
async def project_health(project_id: str, service: ScheduleService = Depends(get_service)):
    try:
        return await service.project_health(project_id)
    except SchedulingError as e:
        raise to_http_exception(e)


# --- WebSocket change feed ---

@app.websocket("/ws/{project_id}")
async def change_feed(websocket: WebSocket, project_id: str, service: ScheduleService = Depends(get_service)):
    """
    Relay change events for one project.

    Clients may send {"action": "ping"} or {"action": "snapshot"} to receive
    the current task list.
    """
    client_id = str(uuid.uuid4())
    feed = ChangeFeedLogger(project_id, client_id)
    await manager.connect(websocket, project_id, client_id)
    feed.log_connect()

    try:
        await service.get_project(project_id)
    except ProjectNotFoundError as e:
        await websocket.send_json({"type": "error", "message": str(e)})
        await websocket.close(code=4404)
        manager.disconnect(project_id, client_id)
        feed.log_disconnect("unknown project")
        return

    async def relay(event: ChangeEvent):
        await manager.send_event(project_id, client_id, event)
        feed.log_event(event.kind.value)

    notifier = service.store.notifier
    notifier.subscribe(project_id, relay)
    try:
        while True:
            data = await websocket.receive_json()
            action = data.get("action")
            if action == "ping":
                await websocket.send_json({"type": "pong"})
            elif action == "snapshot":
                tasks = await service.list_tasks(project_id)
                await websocket.send_json({
                    "type": "snapshot",
                    "data": [task.model_dump(by_alias=True, mode="json") for task in tasks],
                })
    except WebSocketDisconnect:
        feed.log_disconnect()
    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
        feed.log_disconnect(str(e))
    finally:
        notifier.unsubscribe(project_id, relay)
        manager.disconnect(project_id, client_id)


def run():
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "schedule_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=None,
    )
