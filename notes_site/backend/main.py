from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from .config import Settings, build_client, get_settings, store_config
from .domain import NotesError, Unauthorized
from .guard import require_account
from .logs import bind_request, clear_context, configure_logging, get_logger
from .models import LoginRequest, LoginResponse, MessageResponse, NoteData, NoteResponse, NotesListResponse, NoteUpdate
from .pipeline import Pipeline, RequestContext, Response, guard_stage
from .services import NotesService, SessionRegistry, notes_store
from .utils import time_now

logger = get_logger(__name__)

router = APIRouter()


def render(response: Response):
    """Translate a pipeline Response into a Starlette response."""
    if response.location is not None:
        return RedirectResponse(response.location, status_code=response.status)
    if response.html is not None:
        return HTMLResponse(response.html, status_code=response.status)
    return JSONResponse(response.json, status_code=response.status)


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_pipelines(request: Request) -> dict:
    return request.app.state.pipelines


def context_for(
    request: Request,
    authorization: Optional[str],
    body: Optional[dict] = None,
    **params,
) -> RequestContext:
    session = request.app.state.sessions.lookup(authorization)
    bind_request(session.account.account_id if session.account else None, path=request.url.path)
    return RequestContext(body=body or {}, params=params, session=session)


@router.get("/")
async def read_root(request: Request):
    settings: Settings = request.app.state.settings
    return {"message": "Notes API is running", "environment": settings.environment}


@router.post("/login", response_model=LoginResponse)
async def login(creds: LoginRequest, sessions: SessionRegistry = Depends(get_sessions)):
    token = sessions.open(creds.account_id)
    return LoginResponse(success=True, token=token)


@router.post("/logout", response_model=MessageResponse)
async def logout(authorization: Optional[str] = Header(None), sessions: SessionRegistry = Depends(get_sessions)):
    if sessions.close(authorization):
        return MessageResponse(success=True, message="Logged out successfully")
    return MessageResponse(success=False, message="Already logged out")


@router.get("/session")
async def current_session(request: Request, authorization: Optional[str] = Header(None)):
    settings: Settings = request.app.state.settings
    account = require_account(request.app.state.sessions.lookup(authorization), settings.home_path)
    return {"success": True, "account": account.to_dict()}


@router.post("/notes", response_model=NoteResponse, status_code=201)
async def add_note(
    note: NoteData,
    request: Request,
    authorization: Optional[str] = Header(None),
    pipelines: dict = Depends(get_pipelines),
):
    context = context_for(request, authorization, note.model_dump(by_alias=True, exclude_none=True))
    return render(await pipelines["create"].run(context))


@router.get("/notes", response_model=NotesListResponse)
async def list_notes(
    request: Request,
    authorization: Optional[str] = Header(None),
    next: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=100),
    pipelines: dict = Depends(get_pipelines),
):
    context = context_for(request, authorization, next=next, limit=limit)
    return render(await pipelines["list"].run(context))


@router.get("/notes/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: str,
    request: Request,
    authorization: Optional[str] = Header(None),
    pipelines: dict = Depends(get_pipelines),
):
    context = context_for(request, authorization, noteID=note_id)
    return render(await pipelines["read"].run(context))


@router.put("/notes/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: str,
    note: NoteUpdate,
    request: Request,
    authorization: Optional[str] = Header(None),
    pipelines: dict = Depends(get_pipelines),
):
    context = context_for(request, authorization, note.model_dump(exclude_none=True), noteID=note_id)
    return render(await pipelines["update"].run(context))


@router.delete("/notes/{note_id}", response_model=MessageResponse)
async def delete_note(
    note_id: str,
    request: Request,
    authorization: Optional[str] = Header(None),
    pipelines: dict = Depends(get_pipelines),
):
    context = context_for(request, authorization, noteID=note_id)
    return render(await pipelines["delete"].run(context))


@router.get("/health")
async def health_check(request: Request):
    settings: Settings = request.app.state.settings
    return {
        "status": "healthy",
        "timestamp": time_now(),
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
        "notes_table": request.app.state.notes.store.table,
        "active_sessions": len(request.app.state.sessions.active),
    }


async def notes_error_handler(request: Request, exc: NotesError) -> JSONResponse:
    logger.warning("request_failed", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    headers = {"Location": exc.location} if isinstance(exc, Unauthorized) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message or type(exc).__name__},
        headers=headers,
    )


def create_app(settings: Optional[Settings] = None, client=None) -> FastAPI:
    """
    Build the FastAPI application.

    Everything the routes need (settings, storage client, stores, sessions,
    pipelines) is constructed here and hung off ``app.state``; nothing is read
    from module globals at request time.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    client = client or build_client(settings)
    config = store_config(settings, client)
    notes = NotesService(notes_store(config), home=settings.home_path)
    gate = guard_stage(settings.home_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "notes_api_starting",
            environment=settings.environment,
            backend=settings.storage_backend,
            table=notes.store.table,
        )
        yield
        client.close()
        clear_context()
        logger.info("notes_api_stopped")

    app = FastAPI(
        title="Notes API",
        description="Session-gated notes backed by an environment-namespaced store",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sessions = SessionRegistry()
    app.state.notes = notes
    app.state.pipelines = {
        "create": Pipeline([gate, notes.create_stage]),
        "list": Pipeline([gate, notes.list_stage]),
        "read": Pipeline([gate, notes.read_stage]),
        "update": Pipeline([gate, notes.update_stage]),
        "delete": Pipeline([gate, notes.delete_stage]),
    }
    app.add_exception_handler(NotesError, notes_error_handler)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)
