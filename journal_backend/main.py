# journal_backend/main.py
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import FastAPI, Depends, Request, HTTPException, Query, status
from fastapi.responses import HTMLResponse, JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from journal_backend.auth import get_current_user
from journal_backend.config import get_settings
from journal_backend.database import create_db_and_tables, get_session
from journal_backend.models import User
from journal_backend.services.authorization import (
    AuthorizationError, AuthorizationFlowController, AuthorizationMessage, AuthorizationStatus,
    PendingAuthorizations, UnknownAuthorizationAttempt, render_callback_page,
)
from journal_backend.services.calendar_service import EventSyncExecutor
from journal_backend.services.connection import ConnectionStateNotifier
from journal_backend.services.credential_store import CredentialStore
from journal_backend.services.google_oauth import GoogleOAuthClient
from journal_backend.services.todo_service import TodoCreate, TodoService
from journal_backend.services.token_refresh import TokenRefreshManager

settings = get_settings()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    logger.info("Starting up and creating database tables...")
    await create_db_and_tables()
    logger.info("Startup complete.")
    yield

app = FastAPI(lifespan=lifespan)
app.state.pending_authorizations = PendingAuthorizations(ttl_seconds=settings.auth_attempt_ttl_seconds)
app.state.connection_notifier = ConnectionStateNotifier()

app.add_middleware(
    CORSMiddleware, allow_origins=settings.client_urls, allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

# --- Pydantic Models ---
class AuthorizeRequest(BaseModel): callback_origin: str = Field(min_length=1)
class TodoCreateRequest(TodoCreate): sync_to_calendar: bool = False

# --- Dependencies ---
def get_oauth_client() -> GoogleOAuthClient:
    return GoogleOAuthClient(
        settings.google_client_id, settings.google_client_secret, timeout=settings.http_timeout_seconds,
    )

def get_event_executor() -> EventSyncExecutor:
    return EventSyncExecutor(calendar_id=settings.google_calendar_id)

def get_pending_authorizations(request: Request) -> PendingAuthorizations:
    return request.app.state.pending_authorizations

def get_connection_notifier(request: Request) -> ConnectionStateNotifier:
    return request.app.state.connection_notifier

def get_credential_store(session: AsyncSession = Depends(get_session)) -> CredentialStore:
    return CredentialStore(session)

def get_authorization_controller(
    store: CredentialStore = Depends(get_credential_store),
    oauth_client: GoogleOAuthClient = Depends(get_oauth_client),
    pending: PendingAuthorizations = Depends(get_pending_authorizations),
    notifier: ConnectionStateNotifier = Depends(get_connection_notifier),
) -> AuthorizationFlowController:
    return AuthorizationFlowController(store, oauth_client, pending, settings.client_urls, notifier)

def get_todo_service(
    session: AsyncSession = Depends(get_session),
    store: CredentialStore = Depends(get_credential_store),
    oauth_client: GoogleOAuthClient = Depends(get_oauth_client),
    executor: EventSyncExecutor = Depends(get_event_executor),
    notifier: ConnectionStateNotifier = Depends(get_connection_notifier),
) -> TodoService:
    refresh_manager = TokenRefreshManager(store, oauth_client, leeway_seconds=settings.token_expiry_leeway_seconds)
    return TodoService(session, store, refresh_manager, executor, notifier)

# --- API Routes ---
@app.get("/api/calendar/status")
async def calendar_status(
    current_user: User = Depends(get_current_user),
    store: CredentialStore = Depends(get_credential_store),
    notifier: ConnectionStateNotifier = Depends(get_connection_notifier),
):
    return {"connected": await notifier.is_connected(store, current_user.id)}

@app.post("/api/calendar/authorize")
async def begin_calendar_authorization(
    body: AuthorizeRequest,
    current_user: User = Depends(get_current_user),
    controller: AuthorizationFlowController = Depends(get_authorization_controller),
):
    try:
        attempt = controller.begin_authorization(current_user.id, body.callback_origin)
    except AuthorizationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"auth_url": attempt.auth_url, "state": attempt.state}

@app.get("/auth/google/callback", response_class=HTMLResponse)
async def google_auth_callback(
    request: Request,
    state: str = "",
    code: Optional[str] = None,
    error: Optional[str] = None,
    controller: AuthorizationFlowController = Depends(get_authorization_controller),
):
    message = AuthorizationMessage.from_query(code, error)
    origin = f"{request.url.scheme}://{request.url.netloc}"
    if state:
        controller.relay_callback(state, message, origin)
    else:
        logger.warning("Google callback arrived without state")
    return HTMLResponse(render_callback_page(message))

@app.get("/api/calendar/authorize/{state}")
async def await_calendar_authorization(
    state: str,
    wait: Optional[float] = Query(default=None, ge=0, le=60),
    current_user: User = Depends(get_current_user),
    controller: AuthorizationFlowController = Depends(get_authorization_controller),
):
    timeout = settings.auth_wait_seconds if wait is None else wait
    try:
        outcome = await controller.await_authorization(current_user.id, state, timeout)
    except UnknownAuthorizationAttempt:
        raise HTTPException(status_code=404, detail="Unknown or finished authorization attempt")
    except AuthorizationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if outcome is AuthorizationStatus.PENDING:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"status": outcome.value})
    if outcome is AuthorizationStatus.CANCELLED:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"status": outcome.value})
    return {"status": outcome.value, "connected": True}

@app.delete("/api/calendar/authorize/{state}")
async def cancel_calendar_authorization(
    state: str,
    current_user: User = Depends(get_current_user),
    controller: AuthorizationFlowController = Depends(get_authorization_controller),
):
    if not controller.cancel_authorization(current_user.id, state):
        raise HTTPException(status_code=404, detail="Unknown or finished authorization attempt")
    return {"status": AuthorizationStatus.CANCELLED.value}

@app.delete("/api/calendar/connection")
async def disconnect_calendar(
    current_user: User = Depends(get_current_user),
    controller: AuthorizationFlowController = Depends(get_authorization_controller),
):
    deleted = await controller.disconnect(current_user.id)
    return {"connected": False, "deleted": deleted}

@app.post("/api/todos", status_code=status.HTTP_201_CREATED)
async def create_todo(
    body: TodoCreateRequest,
    current_user: User = Depends(get_current_user),
    service: TodoService = Depends(get_todo_service),
):
    data = TodoCreate(task=body.task, entry_date=body.entry_date, important=body.important)
    result = await service.create_todo(current_user.id, data, sync_to_calendar=body.sync_to_calendar)
    return {
        "todo": result.todo.model_dump(mode="json"),
        "sync": {"status": result.sync_status.value, "warning": result.warning},
    }

@app.get("/api/todos")
async def list_todos(
    entry_date: Optional[date] = None,
    current_user: User = Depends(get_current_user),
    service: TodoService = Depends(get_todo_service),
):
    todos = await service.list_todos(current_user.id, entry_date)
    return {"todos": [t.model_dump(mode="json") for t in todos]}

@app.get("/")
async def read_root():
    return {"message": "Daily Journal backend is running!"}
