import logging
import secrets
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import settings
from .errors import GameError, InternalError
from .game import controller
from .logging_config import configure_logging
from .schemas import (
    AdvancePhaseIn,
    AnswerIn,
    AnswerOut,
    CreateSessionIn,
    CreateSessionOut,
    HostSessionOut,
    ImportQuestionsIn,
    JoinIn,
    JoinOut,
    PublicSessionOut,
    QuestionEnabledIn,
    QuestionIn,
    QuestionMoveIn,
    QuestionPatchIn,
    QuestionsOut,
    ResumeHostIn,
)

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Summit Trivia API")

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
origin_regex = settings.CORS_ORIGIN_REGEX or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError):
    logger.debug("%s on %s %s", exc.kind, request.method, request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = InternalError()
    return JSONResponse(status_code=err.status_code, content={"error": err.to_dict()})


async def _authorize_host(session_id: str, token: Optional[str]):
    s = await controller.get_session(session_id)
    if not s:
        raise HTTPException(404, "Session not found")
    if not token or not secrets.compare_digest(token.encode(), s.host_token.encode()):
        raise HTTPException(status_code=401, detail="Invalid host token")


async def require_host(session_id: str, x_host_token: Optional[str] = Header(default=None)):
    await _authorize_host(session_id, x_host_token)


async def require_question_host(question_id: str, x_host_token: Optional[str] = Header(default=None)):
    doc = await controller.db.questions.find_one({"id": question_id})
    if not doc:
        raise HTTPException(404, "Question not found")
    await _authorize_host(doc["session_id"], x_host_token)


# ----------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------


@app.post("/api/sessions", response_model=CreateSessionOut)
async def create_session(payload: CreateSessionIn):
    s = await controller.create_session(payload.host_id)
    return CreateSessionOut(id=s.id, code=s.code, host_token=s.host_token)


@app.post("/api/sessions/resume", response_model=HostSessionOut)
async def resume_host(payload: ResumeHostIn):
    s = await controller.get_session_for_host(payload.code, payload.host_token)
    if not s:
        raise HTTPException(404, "Session not found")
    return HostSessionOut.from_session(s)


@app.get("/api/sessions/by-code/{code}", response_model=PublicSessionOut)
async def get_session_by_code(code: str):
    s = await controller.get_session_by_code(code)
    if not s:
        raise HTTPException(404, "Session not found")
    return PublicSessionOut.from_session(s)


@app.get("/api/sessions/{session_id}", response_model=PublicSessionOut)
async def get_session(session_id: str):
    s = await controller.get_session(session_id)
    if not s:
        raise HTTPException(404, "Session not found")
    return PublicSessionOut.from_session(s)


@app.get("/api/hosts/{host_id}/sessions")
async def list_sessions_by_host(host_id: str):
    sessions = await controller.list_sessions_by_host(host_id)
    return {"sessions": [PublicSessionOut.from_session(s) for s in sessions]}


@app.delete("/api/sessions/{session_id}", dependencies=[Depends(require_host)])
async def delete_session(session_id: str):
    await controller.delete_session(session_id)
    return {"ok": True}


@app.post("/api/sessions/{session_id}/start", response_model=PublicSessionOut, dependencies=[Depends(require_host)])
async def start_session(session_id: str):
    return PublicSessionOut.from_session(await controller.start_session(session_id))


@app.post("/api/sessions/{session_id}/advance", response_model=PublicSessionOut, dependencies=[Depends(require_host)])
async def advance_phase(session_id: str, payload: AdvancePhaseIn):
    return PublicSessionOut.from_session(await controller.advance_phase(session_id, payload.expected_phase))


@app.post("/api/sessions/{session_id}/finish", response_model=PublicSessionOut, dependencies=[Depends(require_host)])
async def finish_session(session_id: str):
    return PublicSessionOut.from_session(await controller.finish_session(session_id))


@app.get("/api/sessions/{session_id}/events")
async def list_events(session_id: str, after: int | None = None, limit: int = Query(default=200, ge=1, le=1000)):
    events = await controller.events.list(session_id, after=after, limit=limit)
    next_after = events[-1]["seq"] if events else after
    latest_seq = await controller.events.latest_seq(session_id)
    return {"events": events, "next_after": next_after, "latest_seq": latest_seq}


# ----------------------------------------------------------------------
# Questions (host only)
# ----------------------------------------------------------------------


@app.get("/api/sessions/{session_id}/questions", response_model=QuestionsOut, dependencies=[Depends(require_host)])
async def list_questions(session_id: str):
    return QuestionsOut(questions=await controller.list_questions(session_id))


@app.post("/api/sessions/{session_id}/questions", dependencies=[Depends(require_host)])
async def add_question(session_id: str, payload: QuestionIn):
    await controller.add_question(
        session_id, payload.text, payload.options, payload.correct_index, payload.time_limit
    )
    return QuestionsOut(questions=await controller.list_questions(session_id))


@app.post("/api/sessions/{session_id}/questions/import", response_model=QuestionsOut, dependencies=[Depends(require_host)])
async def import_questions(session_id: str, payload: ImportQuestionsIn):
    questions = await controller.import_questions(session_id, [q.model_dump() for q in payload.questions])
    return QuestionsOut(questions=questions)


@app.get("/api/sessions/{session_id}/questions/export", dependencies=[Depends(require_host)])
async def export_questions(session_id: str):
    return {"questions": await controller.export_questions(session_id)}


@app.post("/api/sessions/{session_id}/questions/shuffle", response_model=QuestionsOut, dependencies=[Depends(require_host)])
async def shuffle_questions(session_id: str):
    return QuestionsOut(questions=await controller.shuffle_questions(session_id))


@app.patch("/api/questions/{question_id}", dependencies=[Depends(require_question_host)])
async def update_question(question_id: str, payload: QuestionPatchIn):
    q = await controller.update_question(question_id, **payload.model_dump(exclude_none=True))
    return {"question": q}


@app.delete("/api/questions/{question_id}", dependencies=[Depends(require_question_host)])
async def remove_question(question_id: str):
    await controller.remove_question(question_id)
    return {"ok": True}


@app.post("/api/questions/{question_id}/enabled", dependencies=[Depends(require_question_host)])
async def set_question_enabled(question_id: str, payload: QuestionEnabledIn):
    return {"question": await controller.set_question_enabled(question_id, payload.enabled)}


@app.post("/api/questions/{question_id}/toggle", dependencies=[Depends(require_question_host)])
async def toggle_question(question_id: str):
    return {"question": await controller.toggle_question(question_id)}


@app.post("/api/questions/{question_id}/move", response_model=QuestionsOut, dependencies=[Depends(require_question_host)])
async def move_question(question_id: str, payload: QuestionMoveIn):
    return QuestionsOut(questions=await controller.move_question(question_id, payload.direction))


# ----------------------------------------------------------------------
# Players and answers
# ----------------------------------------------------------------------


@app.post("/api/join", response_model=JoinOut)
async def join(payload: JoinIn):
    p = await controller.join_session(payload.code, payload.name)
    return JoinOut(session_id=p.session_id, player=p)


@app.get("/api/players/{player_id}")
async def get_player(player_id: str):
    p = await controller.get_player(player_id)
    if not p:
        raise HTTPException(404, "Player not found")
    return {"player": p}


@app.post("/api/players/{player_id}/heartbeat")
async def heartbeat(player_id: str):
    await controller.heartbeat(player_id)
    return {"ok": True}


@app.post("/api/players/{player_id}/disconnect")
async def disconnect(player_id: str):
    await controller.disconnect(player_id)
    return {"ok": True}


@app.post("/api/answers", response_model=AnswerOut)
async def submit_answer(payload: AnswerIn):
    a = await controller.submit_answer(
        payload.session_id,
        payload.question_index,
        payload.player_id,
        payload.option_index,
        payload.client_timestamp,
    )
    return AnswerOut(
        answer_id=a.id,
        question_index=a.question_index,
        option_index=a.option_index,
        answered_at=a.answered_at,
    )


# ----------------------------------------------------------------------
# Projections
# ----------------------------------------------------------------------


def _found(view, detail: str):
    if view is None:
        raise HTTPException(404, detail)
    return view


@app.get("/api/sessions/{session_id}/current-question")
async def get_current_question(session_id: str):
    return _found(await controller.get_current_question(session_id), "No current question")


@app.get("/api/sessions/{session_id}/players/{player_id}/rope-state")
async def get_player_rope_state(session_id: str, player_id: str):
    return _found(await controller.get_player_rope_state(session_id, player_id), "No current question")


@app.get("/api/sessions/{session_id}/rope-state")
async def get_rope_climbing_state(session_id: str):
    return _found(await controller.get_rope_climbing_state(session_id), "No current question")


@app.get("/api/sessions/{session_id}/results")
async def get_question_results(session_id: str):
    return _found(await controller.get_question_results(session_id), "No current question")


@app.get("/api/sessions/{session_id}/players")
async def list_players(session_id: str):
    if not await controller.get_session(session_id):
        raise HTTPException(404, "Session not found")
    return {"players": await controller.list_players_by_session(session_id)}


@app.get("/api/sessions/{session_id}/players/{player_id}/context")
async def get_player_context(session_id: str, player_id: str, elevation_range: Optional[int] = Query(default=None, ge=0)):
    return _found(await controller.get_player_context(session_id, player_id, elevation_range), "Player not found")


@app.get("/api/sessions/{session_id}/leaderboard")
async def get_leaderboard_summary(
    session_id: str,
    limit: Optional[int] = Query(default=None, ge=0, le=500),
    player_id: Optional[str] = None,
):
    return _found(await controller.get_leaderboard_summary(session_id, limit, player_id), "Session not found")
