"""FastAPI app entrypoint for suggestion-engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from suggestion_engine.config.settings import Settings, get_settings
from suggestion_engine.generation.adapter import GenerationAdapter
from suggestion_engine.generation.llm import LLMClient, build_llm_client
from suggestion_engine.storage.base import BoardStore, SuggestionStore
from suggestion_engine.storage.entities import PopulatedBoard
from suggestion_engine.storage.memory import InMemoryBoardStore, InMemorySuggestionStore
from suggestion_engine.storage.models import Suggestion, SuggestionType
from suggestion_engine.storage.postgres import PostgresBoardStore, PostgresSuggestionStore
from suggestion_engine.suggestions.diff import DiffResult, diff, diff_summary, format_diff
from suggestion_engine.suggestions.errors import (
    GenerationFailure,
    GenerationUnavailable,
    InvalidContent,
    InvalidReference,
    InvalidTransition,
    MaterializationFailure,
    NotFound,
)
from suggestion_engine.suggestions.events import (
    EventPublisher,
    InMemoryMessageHistory,
    LoggingEventPublisher,
    MessageHistory,
)
from suggestion_engine.suggestions.lifecycle import SuggestionLifecycleService
from suggestion_engine.suggestions.materializer import EntityMaterializer

logger = logging.getLogger(__name__)


class CreateSuggestionRequest(BaseModel):
    type: SuggestionType
    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    content: dict[str, Any]
    original_message: str = ""
    related_suggestion_id: str | None = None
    metadata: dict[str, Any] | None = None


class GenerateBoardRequest(BaseModel):
    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    project_description: str | None = None


class GenerateTaskBreakdownRequest(BaseModel):
    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    title: str | None = None
    description: str | None = None
    column_id: str | None = None
    task_id: str | None = None


class GenerateTaskImprovementRequest(BaseModel):
    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    title: str | None = None
    description: str | None = None
    task_id: str | None = None


class ReviewRequest(BaseModel):
    message: str | None = None


class ModifyRequest(BaseModel):
    content: dict[str, Any] = Field(min_length=1)
    message: str | None = None


class DiffRequest(BaseModel):
    original: dict[str, Any]
    proposed: dict[str, Any]


class DiffResponse(DiffResult):
    summary: str
    text: str


class PurgeResponse(BaseModel):
    deleted: int


def _build_stores(settings: Settings) -> tuple[SuggestionStore, BoardStore]:
    if settings.storage_backend.lower() == "memory":
        return InMemorySuggestionStore(), InMemoryBoardStore()

    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set SUGGESTION_ENGINE_DATABASE_URL "
            "or DATABASE_URL before starting the app."
        )
    return PostgresSuggestionStore(database_url), PostgresBoardStore(database_url)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    suggestion_store: SuggestionStore | None,
    board_store: BoardStore | None,
    llm_client: LLMClient | None,
    events: EventPublisher | None,
    messages: MessageHistory | None,
) -> None:
    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "suggestion_store"):
        if suggestion_store is None or board_store is None:
            built_suggestions, built_boards = _build_stores(settings)
            suggestion_store = suggestion_store or built_suggestions
            board_store = board_store or built_boards
        suggestion_store.migrate()
        board_store.migrate()
        app.state.suggestion_store = suggestion_store
        app.state.board_store = board_store

    if not hasattr(app.state, "lifecycle"):
        client = llm_client if llm_client is not None else build_llm_client(settings)
        if client is None:
            logger.warning(
                "llm event=unconfigured provider=%s generation endpoints disabled",
                settings.llm_provider,
            )
        adapter = (
            GenerationAdapter(client, timeout_s=settings.llm_timeout_s)
            if client is not None
            else None
        )
        app.state.lifecycle = SuggestionLifecycleService(
            app.state.suggestion_store,
            EntityMaterializer(app.state.board_store),
            board_store=app.state.board_store,
            events=events or LoggingEventPublisher(),
            messages=messages or InMemoryMessageHistory(),
            adapter=adapter,
            pending_ttl=timedelta(hours=settings.pending_ttl_hours),
        )


def create_app(
    *,
    suggestion_store: SuggestionStore | None = None,
    board_store: BoardStore | None = None,
    llm_client: LLMClient | None = None,
    events: EventPublisher | None = None,
    messages: MessageHistory | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    logging.getLogger("suggestion_engine").setLevel(settings.log_level.upper())

    def ensure_state(app: FastAPI) -> None:
        _ensure_runtime_state(
            app,
            settings=settings,
            suggestion_store=suggestion_store,
            board_store=board_store,
            llm_client=llm_client,
            events=events,
            messages=messages,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_state(app)
        yield

    injected = suggestion_store is not None and board_store is not None
    app = FastAPI(title=settings.app_name, lifespan=None if injected else lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if injected:
        ensure_state(app)

    def _get_lifecycle(request: Request) -> SuggestionLifecycleService:
        if not hasattr(request.app.state, "lifecycle"):
            ensure_state(request.app)
        return request.app.state.lifecycle

    _register_error_handlers(app)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/suggestions", response_model=Suggestion, status_code=201)
    def create_suggestion(payload: CreateSuggestionRequest, request: Request) -> Suggestion:
        return _get_lifecycle(request).create(
            type=payload.type,
            user_id=payload.user_id,
            session_id=payload.session_id,
            content=payload.content,
            original_message=payload.original_message,
            related_suggestion_id=payload.related_suggestion_id,
            metadata=payload.metadata,
        )

    @app.post("/suggestions/generate/board", response_model=Suggestion, status_code=201)
    def generate_board(payload: GenerateBoardRequest, request: Request) -> Suggestion:
        return _get_lifecycle(request).propose_board(
            user_id=payload.user_id,
            session_id=payload.session_id,
            message=payload.message,
            project_description=payload.project_description,
        )

    @app.post(
        "/suggestions/generate/task-breakdown",
        response_model=Suggestion,
        status_code=201,
    )
    def generate_task_breakdown(
        payload: GenerateTaskBreakdownRequest, request: Request
    ) -> Suggestion:
        return _get_lifecycle(request).propose_task_breakdown(
            user_id=payload.user_id,
            session_id=payload.session_id,
            message=payload.message,
            title=payload.title,
            description=payload.description,
            column_id=payload.column_id,
            task_id=payload.task_id,
        )

    @app.post(
        "/suggestions/generate/task-improvement",
        response_model=Suggestion,
        status_code=201,
    )
    def generate_task_improvement(
        payload: GenerateTaskImprovementRequest, request: Request
    ) -> Suggestion:
        return _get_lifecycle(request).propose_task_improvement(
            user_id=payload.user_id,
            session_id=payload.session_id,
            message=payload.message,
            title=payload.title,
            description=payload.description,
            task_id=payload.task_id,
        )

    @app.post("/suggestions/purge-expired", response_model=PurgeResponse)
    def purge_expired(request: Request) -> PurgeResponse:
        return PurgeResponse(deleted=_get_lifecycle(request).purge_expired())

    @app.get("/suggestions/{suggestion_id}", response_model=Suggestion)
    def get_suggestion(suggestion_id: str, request: Request) -> Suggestion:
        return _get_lifecycle(request).get(suggestion_id)

    @app.post("/suggestions/{suggestion_id}/accept", response_model=Suggestion)
    def accept_suggestion(
        suggestion_id: str, request: Request, payload: ReviewRequest | None = None
    ) -> Suggestion:
        message = payload.message if payload else None
        return _get_lifecycle(request).accept(suggestion_id, message)

    @app.post("/suggestions/{suggestion_id}/reject", response_model=Suggestion)
    def reject_suggestion(
        suggestion_id: str, request: Request, payload: ReviewRequest | None = None
    ) -> Suggestion:
        message = payload.message if payload else None
        return _get_lifecycle(request).reject(suggestion_id, message)

    @app.post("/suggestions/{suggestion_id}/modify", response_model=Suggestion)
    def modify_suggestion(
        suggestion_id: str, payload: ModifyRequest, request: Request
    ) -> Suggestion:
        return _get_lifecycle(request).modify(suggestion_id, payload.content, payload.message)

    @app.get("/users/{user_id}/suggestions", response_model=list[Suggestion])
    def list_user_suggestions(user_id: str, request: Request) -> list[Suggestion]:
        return _get_lifecycle(request).list_by_user(user_id)

    @app.get("/sessions/{session_id}/suggestions", response_model=list[Suggestion])
    def list_session_suggestions(session_id: str, request: Request) -> list[Suggestion]:
        return _get_lifecycle(request).list_by_session(session_id)

    @app.get("/sessions/{session_id}/suggestions/pending", response_model=list[Suggestion])
    def list_pending_suggestions(session_id: str, request: Request) -> list[Suggestion]:
        return _get_lifecycle(request).list_pending_by_session(session_id)

    @app.get("/sessions/{session_id}/tasks/{task_id}/suggestion", response_model=Suggestion)
    def find_suggestion_for_task(session_id: str, task_id: str, request: Request) -> Suggestion:
        return _get_lifecycle(request).find_board_suggestion_containing_task(session_id, task_id)

    @app.post("/diff", response_model=DiffResponse)
    def diff_entities(payload: DiffRequest) -> DiffResponse:
        result = diff(payload.original, payload.proposed)
        return DiffResponse(
            **result.model_dump(),
            summary=diff_summary(result),
            text=format_diff(result),
        )

    @app.get("/boards/{board_id}", response_model=PopulatedBoard)
    def get_board(board_id: str, request: Request) -> PopulatedBoard:
        lifecycle = _get_lifecycle(request)
        board = lifecycle.board_store.get_populated_board(board_id)
        if board is None:
            raise HTTPException(status_code=404, detail="Board not found")
        return board

    return app


def _register_error_handlers(app: FastAPI) -> None:
    def _handler(status_code: int, detail: str | None = None):
        async def handle(request: Request, exc: Exception) -> JSONResponse:
            return JSONResponse(status_code=status_code, content={"detail": detail or str(exc)})

        return handle

    app.add_exception_handler(NotFound, _handler(404))
    app.add_exception_handler(InvalidReference, _handler(404))
    app.add_exception_handler(InvalidTransition, _handler(409))
    app.add_exception_handler(InvalidContent, _handler(422))
    app.add_exception_handler(GenerationFailure, _handler(400))
    app.add_exception_handler(GenerationUnavailable, _handler(503))
    app.add_exception_handler(MaterializationFailure, _handler(500, "Materialization failed"))

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "request event=unhandled_error method=%s path=%s",
            request.method,
            request.url.path,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app = create_app()
