from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .context import ContextAssembler
from .coordinator import TurnCoordinator
from .db import build_store
from .errors import InvalidRequest, MentorError
from .llm import LanguageModel, get_model
from .prompts import get_persona
from .schemas import (
    ChatRequest,
    ChatResponse,
    CheckInRequest,
    CheckInResponse,
    CreateUserRequest,
    CreateUserResponse,
    HistoryItem,
    UserResponse,
)
from .store import CHRONOLOGICAL, ConversationStore

logger = logging.getLogger("mentor")


def http_error(e: MentorError) -> HTTPException:
    if e.status_code >= 500:
        logger.error("%s: %s", e.__class__.__name__, e)
    return HTTPException(status_code=e.status_code, detail=str(e))


def create_app(
    store: Optional[ConversationStore] = None,
    model: Optional[LanguageModel] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
    )

    store = store or build_store(settings.database_url, ssl=settings.db_ssl)
    model = model or get_model(settings)
    assembler = ContextAssembler(
        get_persona(settings.exam_target, override=settings.persona),
        mode=settings.context_mode,
        window=settings.context_window,
    )
    coordinator = TurnCoordinator(store, assembler, model)

    app = FastAPI(title="Mentor Accountability Coach API", version="0.1.0")
    app.state.settings = settings
    app.state.store = store
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @app.get("/health")
    def health():
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "backend": settings.backend,
            "store": "ok" if store.ping() else "unavailable",
        }

    router = APIRouter()

    @router.post("/user/create", response_model=CreateUserResponse)
    def create_user(payload: CreateUserRequest):
        name = (payload.name or "").strip()
        email = (payload.email or "").strip()
        try:
            if not name or not email:
                raise InvalidRequest("Name and email required")
            user = store.create_user(
                name,
                email,
                exam_target=payload.exam_target,
                preparation_stage=payload.preparation_stage,
                check_in_time=payload.check_in_time,
            )
        except MentorError as e:
            raise http_error(e)
        logger.info("user created user_id=%s", user.id)
        return CreateUserResponse(user_id=user.id)

    @router.get("/user/{user_id}", response_model=UserResponse)
    def get_user(user_id: str):
        try:
            user = store.get_user(user_id)
        except MentorError as e:
            raise http_error(e)
        return UserResponse(
            id=user.id,
            name=user.name,
            email=user.email,
            exam_target=user.exam_target,
            preparation_stage=user.preparation_stage,
            check_in_time=user.check_in_time,
        )

    @router.post("/chat", response_model=ChatResponse)
    def chat(payload: ChatRequest):
        try:
            outcome = coordinator.handle_chat_turn(payload.user_id, payload.message)
        except MentorError as e:
            raise http_error(e)
        return ChatResponse(response=outcome.reply)

    @router.get("/chat/history/{user_id}", response_model=List[HistoryItem])
    def chat_history(user_id: str, limit: Optional[int] = Query(default=None, ge=1)):
        try:
            if limit is None:
                turns = store.all_turns(user_id)
            else:
                turns = store.recent_turns(user_id, limit, CHRONOLOGICAL)
        except MentorError as e:
            raise http_error(e)
        return [HistoryItem(sender=t.role, content=t.content, timestamp=t.timestamp) for t in turns]

    @router.get("/stats/{user_id}")
    def stats(user_id: str):
        try:
            record = store.get_stats(user_id)
        except MentorError as e:
            raise http_error(e)
        if record is None:
            return {"total_check_ins": 0}
        return {
            "user_id": record.user_id,
            "total_check_ins": record.total_check_ins,
            "last_check_in": record.last_check_in.isoformat() if record.last_check_in else None,
            "total_study_hours": record.total_study_hours,
            "current_streak": record.current_streak,
        }

    @router.post("/checkin", response_model=CheckInResponse)
    def checkin(payload: CheckInRequest):
        try:
            if not payload.user_id or not payload.user_id.strip():
                raise InvalidRequest("user_id required")
            store.record_check_in(
                payload.user_id,
                payload.study_hours,
                payload.subjects,
                payload.mood_rating,
                payload.challenges,
            )
            record = store.get_stats(payload.user_id)
        except MentorError as e:
            raise http_error(e)
        logger.info("check-in recorded user_id=%s hours=%s", payload.user_id, payload.study_hours)
        return CheckInResponse(
            total_check_ins=record.total_check_ins if record else 0,
            current_streak=record.current_streak if record else 0,
        )

    # same routes at the root so clients can call /chat as well as /api/chat
    app.include_router(router, prefix="/api")
    app.include_router(router)
    return app


def run() -> None:
    import uvicorn

    uvicorn.run("mentor.main:create_app", factory=True, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
