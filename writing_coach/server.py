"""
HTTP Surface

FastAPI routes for the host editor (document and edit events) and the
presentation layer (metrics, modes, session commands).
"""

from typing import Dict, Optional
import logging
import os

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel
from starlette.middleware.cors import CORSMiddleware

from . import __version__
from .advisory import BackendFailure, BackendFailureKind
from .coach import UnknownWritingMode, WritingCoach
from .rules import WritingMode
from .session import InvalidSessionState

logger = logging.getLogger(__name__)


BACKEND_FAILURE_STATUS = {
    BackendFailureKind.UNAUTHORIZED: 401,
    BackendFailureKind.RATE_LIMITED: 429,
    BackendFailureKind.TRANSIENT: 503,
    BackendFailureKind.UNKNOWN: 502,
}


# Request models

class DocumentLoad(BaseModel):
    text: str = ""


class EditorChange(BaseModel):
    text: str
    cursorLineText: str = ""
    cursorOffset: int = 0
    nextLineText: Optional[str] = None


class ModeSelect(BaseModel):
    modeId: str


class UserTurn(BaseModel):
    message: str


def backend_error(e: BackendFailure) -> HTTPException:
    logger.warning(f"Advisory backend failure ({e.kind.value}): {e.message}")
    return HTTPException(status_code=BACKEND_FAILURE_STATUS[e.kind], detail=e.to_dict())


def mode_to_dict(mode: WritingMode) -> Dict:
    return {
        "id": mode.id,
        "name": mode.name,
        "description": mode.description,
        "applicableTriggerNames": list(mode.applicable_trigger_names),
        "guidanceText": mode.guidance_text,
        "allowAbstract": mode.allow_abstract,
        "needsMoreSupport": mode.needs_more_support,
    }


def create_router(coach: WritingCoach) -> APIRouter:
    api_router = APIRouter(prefix="/api")

    @api_router.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    @api_router.post("/document")
    async def load_document(data: DocumentLoad):
        coach.load_document(data.text)
        return {"status": "ok"}

    @api_router.post("/edits")
    async def editor_change(data: EditorChange):
        delta = coach.on_editor_change(
            data.text,
            cursor_line_text=data.cursorLineText,
            cursor_offset=data.cursorOffset,
            next_line_text=data.nextLineText,
        )
        return {
            "inserted": len(delta.inserted_text) if delta else 0,
            "removed": len(delta.removed_text) if delta else 0,
            "session": coach.session.snapshot().to_dict(),
        }

    @api_router.get("/metrics")
    async def get_metrics(recompute: bool = False):
        metrics = coach.recompute_metrics() if recompute else coach.engine.snapshot()
        return metrics.to_dict()

    @api_router.get("/modes")
    async def get_modes():
        return {
            "current": coach.writing_mode,
            "modes": [mode_to_dict(mode) for mode in coach.writing_modes()],
        }

    @api_router.post("/mode")
    async def select_mode(data: ModeSelect):
        try:
            coach.select_mode(data.modeId)
        except UnknownWritingMode:
            raise HTTPException(status_code=404, detail=f"Unknown writing mode: {data.modeId}")
        return {"current": coach.writing_mode}

    @api_router.get("/session")
    async def get_session():
        return coach.status()

    @api_router.post("/session/dismiss")
    async def dismiss():
        try:
            coach.dismiss()
        except InvalidSessionState as e:
            raise HTTPException(status_code=409, detail=str(e))
        return coach.session.snapshot().to_dict()

    @api_router.post("/session/acknowledge")
    async def acknowledge():
        try:
            coach.acknowledge()
        except InvalidSessionState as e:
            raise HTTPException(status_code=409, detail=str(e))
        return coach.session.snapshot().to_dict()

    @api_router.post("/session/turn")
    async def send_turn(data: UserTurn):
        if not data.message.strip():
            raise HTTPException(status_code=400, detail="Message is empty")
        try:
            reply = await coach.send_user_turn(data.message)
        except InvalidSessionState as e:
            raise HTTPException(status_code=409, detail=str(e))
        except BackendFailure as e:
            raise backend_error(e)
        return {"reply": reply, "session": coach.session.snapshot().to_dict()}

    @api_router.post("/rules/{rule_name}/fire")
    async def fire_rule(rule_name: str):
        try:
            result = await coach.force_fire_rule(rule_name)
        except InvalidSessionState as e:
            raise HTTPException(status_code=409, detail=str(e))
        except BackendFailure as e:
            raise backend_error(e)

        if result is None:
            raise HTTPException(status_code=404, detail=f"Unknown trigger: {rule_name}")
        return {"ruleName": result.rule_name, "session": coach.session.snapshot().to_dict()}

    @api_router.get("/triggers/history")
    async def trigger_history(limit: int = 20):
        events = coach.scheduler.history()[-limit:] if limit > 0 else []
        return {"events": [event.to_dict() for event in events]}

    return api_router


def create_app(coach: WritingCoach, start_loops: bool = True) -> FastAPI:
    app = FastAPI(title="Writing Coach", version=__version__)
    app.include_router(create_router(coach))

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def start_coach():
        if start_loops:
            coach.start()

    @app.on_event("shutdown")
    async def stop_coach():
        await coach.stop()

    return app
