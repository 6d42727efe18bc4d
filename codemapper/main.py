"""FastAPI application: one in-process CodeMapper session (scan → start/pause/retry → diagrams)."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from codemapper.config import Settings, get_env_file_path, get_settings
from codemapper.infrastructure.audit import log_audit
from codemapper.infrastructure.logging_config import configure_logging
from codemapper.models.schemas import (
    ActionResponse,
    ConfigOut,
    ConfigUpdateRequest,
    CreateSessionRequest,
    DiagramListOut,
    DiagramOut,
    ErrorResponse,
    FileRecordOut,
    LoadSnapshotRequest,
    LogListOut,
    SavedLogEntry,
    SessionStatus,
)
from codemapper.models.state import ProcessingStatus, RetryNotAllowedError
from codemapper.run_loop import CancellationToken, CodeMapperSession, RunAlreadyActiveError
from codemapper.services.scanner import ScanError
from codemapper.services.snapshot import SnapshotError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_app: FastAPI):  # noqa: ARG001
    """Startup: configure logging and log provider config. Shutdown: none."""
    settings = get_settings()
    configure_logging(settings.LOG_FORMAT)
    key_set = bool((settings.API_KEY.get_secret_value() or "").strip())
    logger.info(
        "Config: env_file=%s, LLM_PROVIDER=%s, API_KEY=%s",
        get_env_file_path(),
        settings.provider,
        "set" if key_set else "not set",
    )
    yield


app = FastAPI(
    title="CodeMapper",
    description="Incrementally build C4 architecture diagrams of a local codebase",
    lifespan=_lifespan,
)
app.state.session = None
# Tests replace this with a fake (system_prompt, user_prompt, provider_config) -> text.
app.state.generate = None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(status="error", message=message).model_dump(),
    )


def _no_session() -> JSONResponse:
    return _error(404, "No session. Create one with POST /session first.")


def _audit(session: CodeMapperSession | None, settings: Settings, action: str, resource: str, result: str, **meta: object) -> None:
    """Write one api_request audit entry for the current session."""
    log_audit(
        event_type="api_request",
        resource=resource,
        action=action,
        result=result,
        run_id=session.run_id if session is not None else "",
        metadata=meta,
        audit_path=settings.AUDIT_LOG_PATH,
    )


def _status(session: CodeMapperSession) -> SessionStatus:
    state = session.state
    return SessionStatus(
        project_name=state.project_name,
        total_count=len(state.files),
        processed_count=state.processed_count,
        completed_count=state.count_status(ProcessingStatus.COMPLETED),
        skipped_count=state.count_status(ProcessingStatus.SKIPPED),
        failed_count=state.count_status(ProcessingStatus.FAILED),
        current_file_index=state.cursor,
        is_running=state.is_running,
        diagram_keys=state.diagrams.keys(),
        files=[
            FileRecordOut(index=i, path=f.path, size=f.size, status=f.status.value, error=f.error)
            for i, f in enumerate(state.files)
        ],
    )


@app.exception_handler(RequestValidationError)
def validation_exception_handler(_request: object, exc: RequestValidationError) -> JSONResponse:
    """Return ErrorResponse (400) for invalid request bodies or path parameters."""
    errors = exc.errors() or []
    msg = "Invalid request"
    if errors:
        first = errors[0]
        loc = first.get("loc", ())
        msg = first.get("msg", msg)
        if "directory" in loc:
            msg = "directory is required and must be a non-empty string"
        elif loc:
            msg = f"Invalid request ({'.'.join(str(p) for p in loc)}): {msg}"
    return _error(400, msg)


@app.get("/")
def root() -> dict[str, str]:
    """Root route: point to the session endpoints and API docs."""
    return {
        "message": "CodeMapper. Use POST /session with {\"directory\": \"/path/to/project\"}, then POST /session/start",
        "docs": "/docs",
    }


@app.post("/session", response_model=SessionStatus)
async def create_session(
    body: CreateSessionRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
) -> SessionStatus | JSONResponse:
    """Scan the directory and replace the current session (restoring a matching snapshot)."""
    current: CodeMapperSession | None = request.app.state.session
    if current is not None and current.is_running:
        return _error(409, "A run is active. Pause it before opening another project.")
    try:
        session = await asyncio.to_thread(
            CodeMapperSession.from_directory,
            body.directory,
            settings,
            generate=request.app.state.generate,
        )
    except ScanError as e:
        _audit(None, settings, "POST", "/session", "failure", directory=body.directory, message=e.message)
        return _error(400, e.message)
    request.app.state.session = session
    _audit(session, settings, "POST", "/session", "success", directory=body.directory, files=len(session.state.files))
    return _status(session)


@app.get("/session", response_model=SessionStatus)
def get_session(request: Request) -> SessionStatus | JSONResponse:
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    return _status(session)


async def _run_in_background(session: CodeMapperSession, token: CancellationToken) -> None:
    """Background task body: run the loop; unexpected errors end the run and land in the run log."""
    try:
        outcome = await session.run(token)
    except Exception as e:
        logger.exception("Run for %s stopped unexpectedly", session.state.project_name)
        session.state.add_log(f"Run stopped: {e}", "error")
        return
    logger.info("Run for %s ended: %s", session.state.project_name, outcome.value)


@app.post("/session/start", response_model=ActionResponse)
def start_session(request: Request, background_tasks: BackgroundTasks) -> ActionResponse | JSONResponse:
    """Start or resume the loop from the cursor (409 when already running)."""
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    try:
        token = session.begin()
    except RunAlreadyActiveError as e:
        _audit(session, session.settings, "POST", "/session/start", "failure", message=e.message)
        return _error(409, e.message)
    background_tasks.add_task(_run_in_background, session, token)
    _audit(session, session.settings, "POST", "/session/start", "success", cursor=session.state.cursor)
    return ActionResponse(message="Analysis started.")


@app.post("/session/pause", response_model=ActionResponse)
def pause_session(request: Request) -> ActionResponse | JSONResponse:
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    if not session.is_running:
        return _error(409, "No run is active.")
    session.pause()
    _audit(session, session.settings, "POST", "/session/pause", "success")
    return ActionResponse(message="Pause requested; the current batch will finish first.")


@app.post("/session/files/{index}/retry", response_model=FileRecordOut)
def retry_file(index: int, request: Request) -> FileRecordOut | JSONResponse:
    """Reset one Failed file to Pending and rewind the cursor (409 when not allowed)."""
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    try:
        record = session.retry(index)
    except RetryNotAllowedError as e:
        _audit(session, session.settings, "POST", "/session/files/retry", "failure", index=index, message=e.message)
        return _error(409, e.message)
    _audit(session, session.settings, "POST", "/session/files/retry", "success", index=index, path=record.path)
    return FileRecordOut(index=index, path=record.path, size=record.size, status=record.status.value, error=record.error)


@app.get("/session/diagrams", response_model=DiagramListOut)
def list_diagrams(request: Request) -> DiagramListOut | JSONResponse:
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    return DiagramListOut(keys=session.state.diagrams.keys())


@app.get("/session/diagrams/{key:path}", response_model=DiagramOut)
def get_diagram(key: str, request: Request) -> DiagramOut | JSONResponse:
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    source = session.state.diagrams.get(key)
    if source is None:
        return _error(404, f"No diagram for '{key}'.")
    return DiagramOut(key=key, source=source)


@app.get("/session/logs", response_model=LogListOut)
def get_logs(request: Request) -> LogListOut | JSONResponse:
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    return LogListOut(
        logs=[SavedLogEntry(timestamp=e.timestamp, level=e.level, message=e.message) for e in session.state.logs]
    )


@app.post("/session/snapshot", response_model=ActionResponse)
def save_snapshot(request: Request) -> ActionResponse | JSONResponse:
    """Manual save: write the snapshot and the Overview output now."""
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    try:
        session.persist()
    except OSError as e:
        _audit(session, session.settings, "POST", "/session/snapshot", "failure", message=str(e))
        return _error(500, f"Could not write snapshot: {e}")
    session.state.add_log("Progress saved.", "success")
    _audit(session, session.settings, "POST", "/session/snapshot", "success", path=str(session.state_path))
    return ActionResponse(message=f"Snapshot written to {session.state_path}.")


@app.delete("/session/snapshot", response_model=ActionResponse)
def delete_snapshot(request: Request) -> ActionResponse | JSONResponse:
    """Clear saved data: remove the snapshot file. The in-memory session is unchanged."""
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    try:
        removed = session.clear_snapshot()
    except OSError as e:
        return _error(500, f"Could not remove snapshot: {e}")
    _audit(session, session.settings, "DELETE", "/session/snapshot", "success", removed=removed)
    return ActionResponse(message="Snapshot removed." if removed else "No snapshot to remove.")


@app.post("/session/snapshot/load", response_model=SessionStatus)
def load_snapshot(body: LoadSnapshotRequest, request: Request) -> SessionStatus | JSONResponse:
    """Load a saved state (file path or inline JSON) into the current session.

    400 on a missing or malformed snapshot, 409 while running or when it belongs to another project.
    """
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    source = body.path if body.path is not None else "body"
    try:
        if body.path is not None:
            applied = session.load_snapshot(path=body.path.strip())
        else:
            applied = session.load_snapshot(raw=json.dumps(body.snapshot))
    except RunAlreadyActiveError as e:
        _audit(session, session.settings, "POST", "/session/snapshot/load", "failure", source=source, message=e.message)
        return _error(409, e.message)
    except SnapshotError as e:
        _audit(session, session.settings, "POST", "/session/snapshot/load", "failure", source=source, message=e.message)
        return _error(400, e.message)
    if not applied:
        _audit(session, session.settings, "POST", "/session/snapshot/load", "failure", source=source, applied=False)
        return _error(409, f"Saved state does not belong to project '{session.state.project_name}'.")
    _audit(session, session.settings, "POST", "/session/snapshot/load", "success", source=source)
    return _status(session)


def _config_out(settings: Settings) -> ConfigOut:
    provider_config = settings.provider_config()
    return ConfigOut(
        provider=provider_config.provider,
        model_name=provider_config.model_name,
        base_url=provider_config.base_url,
        api_key_set=bool(provider_config.api_key),
        batch_count=settings.BATCH_COUNT,
        batch_size_kb=settings.BATCH_SIZE_KB,
        max_file_size_kb=settings.MAX_FILE_SIZE_KB,
    )


@app.get("/session/config", response_model=ConfigOut)
def get_config(request: Request) -> ConfigOut | JSONResponse:
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    return _config_out(session.settings)


@app.put("/session/config", response_model=ConfigOut)
def update_config(body: ConfigUpdateRequest, request: Request) -> ConfigOut | JSONResponse:
    """Change provider or batching settings; a running loop picks them up at its next batch."""
    session: CodeMapperSession | None = request.app.state.session
    if session is None:
        return _no_session()
    changed = session.update_config(body.to_settings_update())
    _audit(session, session.settings, "PUT", "/session/config", "success", fields=changed)
    return _config_out(session.settings)
