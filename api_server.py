"""
Voice Notes - API Server

Backend for the voice notes web app. Authenticates the single admin
user, proxies audio and text to the hosted DashScope models, and
stores notes.

Usage:
    python api_server.py
"""

import asyncio
import datetime as dt
import functools
import logging
import time
import concurrent.futures
from pathlib import Path
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from openai import OpenAIError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from api.auth import TokenService, build_token_service
from api.config import Settings
from api.exceptions import InvalidCredential, ProviderNotConfigured
from api.middleware import (
    AuthGateMiddleware,
    LoginRateLimitMiddleware,
    RequestLoggingMiddleware,
    require_auth,
)
from api.models import (
    LoginRequest, LoginResponse, VerifyResponse,
    TranscribeRequest, TranscribeResponse,
    OptimizeTextRequest, OptimizeTextResponse,
    NoteContent, NoteResponse, NoteListResponse,
    DailyReviewRequest, DailyReviewResponse,
    ErrorResponse,
)

from src.llm.note_taker import NoteTaker
from src.storage.notes import Note, NoteNotFound, NoteStore
from src.transcription.engine import DashScopeTranscriber


logger = logging.getLogger(__name__)

OPTIMIZE_MODES = {"remove-filler"}


class APIState:
    """Collaborators shared by all requests. Built once in create_app."""

    def __init__(
        self,
        settings: Settings,
        token_service: TokenService,
        note_store: NoteStore,
        transcriber: Optional[DashScopeTranscriber] = None,
        note_taker: Optional[NoteTaker] = None,
        max_workers: int = 4,
    ):
        self.settings = settings
        self.token_service = token_service
        self.note_store = note_store
        self.transcriber = transcriber
        self.note_taker = note_taker
        # Thread pool for blocking provider and database calls
        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="api"
        )

    def require_transcriber(self) -> DashScopeTranscriber:
        if self.transcriber is None:
            raise ProviderNotConfigured("DASHSCOPE_API_KEY not set")
        return self.transcriber

    def require_note_taker(self) -> NoteTaker:
        if self.note_taker is None:
            raise ProviderNotConfigured("DASHSCOPE_API_KEY not set")
        return self.note_taker

    async def run_blocking(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, functools.partial(func, *args, **kwargs))

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)
        if self.transcriber is not None:
            self.transcriber.close()
        self.note_store.close()


class SPAStaticFiles(StaticFiles):
    """Static files with index.html as the fallback for unknown paths."""

    async def get_response(self, path: str, scope):
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as e:
            if e.status_code != 404 or path == "api" or path.startswith("api/"):
                raise
            return await super().get_response("index.html", scope)


def get_state(request: Request) -> APIState:
    return request.app.state.api


def note_response(note: Note) -> NoteResponse:
    return NoteResponse(
        id=note.id,
        content=note.content,
        created_at=note.created_at,
        updated_at=note.updated_at,
    )


def create_app(
    settings: Optional[Settings] = None,
    token_service: Optional[TokenService] = None,
    note_store: Optional[NoteStore] = None,
    transcriber: Optional[DashScopeTranscriber] = None,
    note_taker: Optional[NoteTaker] = None,
) -> FastAPI:
    """
    Build the application.

    Settings and the signing key are resolved here, once, before any
    request is served. Collaborators default to the real implementations
    and can be swapped out for tests.
    """
    if settings is None:
        settings = Settings.from_env()
    if token_service is None:
        token_service = build_token_service(settings)
    if note_store is None:
        note_store = NoteStore(settings.database_url)

    if settings.dashscope_api_key:
        if transcriber is None:
            transcriber = DashScopeTranscriber(
                api_key=settings.dashscope_api_key,
                base_url=settings.dashscope_base_url,
            )
        if note_taker is None:
            note_taker = NoteTaker(
                api_key=settings.dashscope_api_key,
                base_url=f"{settings.dashscope_base_url.rstrip('/')}/compatible-mode/v1",
            )
    elif transcriber is None or note_taker is None:
        logger.warning("DASHSCOPE_API_KEY not set; transcription and text features disabled")

    api_state = APIState(
        settings=settings,
        token_service=token_service,
        note_store=note_store,
        transcriber=transcriber,
        note_taker=note_taker,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("Voice Notes API Server starting...")
        logger.info(f"DashScope API key: {'configured' if settings.dashscope_api_key else 'NOT CONFIGURED'}")
        yield
        logger.info("Shutting down API server...")
        api_state.shutdown()

    app = FastAPI(
        title="Voice Notes API",
        description="Voice note capture backend",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.api = api_state

    # Middleware added last runs first: CORS, logging, throttle, then the gate
    app.add_middleware(
        AuthGateMiddleware,
        token_service=token_service,
        exempt_paths=settings.exempt_paths,
        protect_static=settings.protect_static,
    )
    app.add_middleware(
        LoginRateLimitMiddleware,
        limit=settings.login_rate_limit,
        window_seconds=settings.login_rate_window,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    register_routes(app)
    register_exception_handlers(app)

    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", SPAStaticFiles(directory=static_dir, html=True), name="static")
    else:
        logger.info(f"Static directory {static_dir} not found; not serving static files")

    return app


def register_routes(app: FastAPI) -> None:

    # ==================== Health & Auth Endpoints ====================

    @app.get("/health")
    async def health_check():
        """Health check endpoint (no auth required)."""
        return {"status": "healthy", "timestamp": time.time()}

    @app.post("/api/login", response_model=LoginResponse, response_model_exclude_none=True)
    async def login(data: LoginRequest, request: Request):
        """Exchange the admin password for a bearer token."""
        state = get_state(request)

        try:
            token = state.token_service.login(data.password)
        except InvalidCredential:
            client = request.client.host if request.client else "unknown"
            logger.warning(f"Failed login attempt from {client}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"success": False, "error": "Invalid password"},
            )

        return LoginResponse(success=True, token=token)

    @app.post("/api/verify", response_model=VerifyResponse)
    async def verify(request: Request):
        """Report whether a token is valid. Always 200."""
        state = get_state(request)
        try:
            body = await request.json()
        except ValueError:
            body = None

        token = body.get("token") if isinstance(body, dict) else None
        valid = isinstance(token, str) and state.token_service.verify_token(token)
        return VerifyResponse(valid=valid)

    # ==================== Transcription Endpoints ====================

    @app.post("/api/transcribe", response_model=TranscribeResponse, response_model_exclude_none=True)
    async def transcribe_audio(
        data: TranscribeRequest,
        request: Request,
        _=Depends(require_auth),
    ):
        """Transcribe base64-encoded audio with the hosted ASR model."""
        state = get_state(request)
        transcriber = state.require_transcriber()

        result = await state.run_blocking(transcriber.transcribe, data.audio, data.format)
        if not result.success:
            logger.error(f"Transcription error: {result.error}")

        return TranscribeResponse(success=result.success, text=result.text, error=result.error)

    @app.post("/api/optimize-text", response_model=OptimizeTextResponse, response_model_exclude_none=True)
    async def optimize_text(
        data: OptimizeTextRequest,
        request: Request,
        _=Depends(require_auth),
    ):
        """Remove filler words from a transcript."""
        state = get_state(request)
        if data.mode not in OPTIMIZE_MODES:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"success": False, "error": "Invalid mode"},
            )
        note_taker = state.require_note_taker()

        try:
            optimized = await state.run_blocking(note_taker.optimize_text, data.text)
        except OpenAIError as e:
            logger.error(f"Text optimization error: {e}")
            return OptimizeTextResponse(success=False, error=str(e))

        return OptimizeTextResponse(
            success=True,
            text=optimized.text,
            original_text=optimized.original_text,
        )

    # ==================== Notes Endpoints ====================

    @app.get("/api/notes", response_model=NoteListResponse)
    async def list_notes(request: Request, _=Depends(require_auth)):
        """All notes, most recently updated first."""
        state = get_state(request)
        notes = await state.run_blocking(state.note_store.list_all)
        return NoteListResponse(notes=[note_response(n) for n in notes], count=len(notes))

    @app.post("/api/notes", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
    async def create_note(data: NoteContent, request: Request, _=Depends(require_auth)):
        state = get_state(request)
        note = await state.run_blocking(state.note_store.create, data.content)
        return note_response(note)

    @app.get("/api/notes/{note_id}", response_model=NoteResponse)
    async def get_note(note_id: str, request: Request, _=Depends(require_auth)):
        state = get_state(request)
        note = await state.run_blocking(state.note_store.get, note_id)
        if note is None:
            raise NoteNotFound(note_id)
        return note_response(note)

    @app.put("/api/notes/{note_id}", response_model=NoteResponse)
    async def update_note(note_id: str, data: NoteContent, request: Request, _=Depends(require_auth)):
        state = get_state(request)
        note = await state.run_blocking(state.note_store.update, note_id, data.content)
        return note_response(note)

    @app.post("/api/notes/{note_id}/append", response_model=NoteResponse)
    async def append_to_note(note_id: str, data: NoteContent, request: Request, _=Depends(require_auth)):
        """Append a new recording's text to an existing note."""
        state = get_state(request)
        note = await state.run_blocking(state.note_store.append, note_id, data.content)
        return note_response(note)

    @app.delete("/api/notes/{note_id}")
    async def delete_note(note_id: str, request: Request, _=Depends(require_auth)):
        state = get_state(request)
        deleted = await state.run_blocking(state.note_store.delete, note_id)
        if not deleted:
            raise NoteNotFound(note_id)
        return {"success": True, "id": note_id}

    # ==================== Daily Review ====================

    @app.post("/api/daily-review", response_model=DailyReviewResponse, response_model_exclude_none=True)
    async def daily_review(
        request: Request,
        data: Optional[DailyReviewRequest] = None,
        _=Depends(require_auth),
    ):
        """
        Summarize the notes created on one day (UTC).

        Days without notes return an empty review without calling the model.
        """
        state = get_state(request)
        day = (data.date if data else None) or dt.datetime.now(dt.timezone.utc).date()

        notes = await state.run_blocking(state.note_store.list_for_day, day)
        if not notes:
            return DailyReviewResponse(success=True, date=day, note_count=0)
        note_taker = state.require_note_taker()

        try:
            review = await state.run_blocking(
                note_taker.daily_review,
                [n.content for n in notes],
                day,
            )
        except OpenAIError as e:
            logger.error(f"Daily review error: {e}")
            return DailyReviewResponse(success=False, date=day, note_count=len(notes), error=str(e))

        return DailyReviewResponse(
            success=True,
            date=day,
            note_count=len(notes),
            summary=review.summary,
            key_points=review.key_points,
            todos=review.todos,
        )

    # ==================== Debug ====================

    @app.get("/api/debug")
    async def debug_info(request: Request, _=Depends(require_auth)):
        """Provider configuration status."""
        state = get_state(request)
        api_key = state.settings.dashscope_api_key

        info = {
            "has_api_key": bool(api_key),
            "api_key_prefix": f"{api_key[:8]}..." if api_key else None,
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "note_count": await state.run_blocking(state.note_store.count),
        }
        if state.transcriber is not None:
            info["api_test"] = await state.run_blocking(state.transcriber.check_api_key)

        return info


# ==================== Error Handlers ====================

def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "code": f"HTTP_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(ProviderNotConfigured)
    async def provider_not_configured_handler(request: Request, exc: ProviderNotConfigured):
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "API key not configured"},
        )

    @app.exception_handler(NoteNotFound)
    async def note_not_found_handler(request: Request, exc: NoteNotFound):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ErrorResponse(error="Note not found", code="HTTP_404").model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal server error", code="INTERNAL_ERROR").model_dump(),
        )


def main() -> None:
    settings = Settings.from_env()

    # Configure logging
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
