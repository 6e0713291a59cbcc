from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .utils import new_id, new_token, now_ts

OptionIndex = int


class SessionStatus(str, Enum):
    LOBBY = "lobby"
    ACTIVE = "active"
    FINISHED = "finished"


# Phases: lobby -> pre_game -> question_shown -> answers_shown -> revealed
#         -> results -> question_shown (next) ... -> finished
class QuestionPhase(str, Enum):
    LOBBY = "lobby"
    PRE_GAME = "pre_game"
    QUESTION_SHOWN = "question_shown"
    ANSWERS_SHOWN = "answers_shown"
    REVEALED = "revealed"
    RESULTS = "results"
    FINISHED = "finished"


class Session(BaseModel):
    id: str = Field(default_factory=new_id)
    code: str
    host_id: str
    host_token: str = Field(default_factory=new_token)
    status: SessionStatus = SessionStatus.LOBBY
    current_question_index: int = -1
    # Marker for the current question only; read it through phases.derive_phase.
    question_phase: Optional[QuestionPhase] = None
    answers_shown_at: Optional[float] = None
    revealed_through: int = -1
    created_at: float = Field(default_factory=now_ts)
    updated_at: float = Field(default_factory=now_ts)


class Question(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    text: str
    options: List[str]
    correct_index: OptionIndex
    order: int = 0
    time_limit: int = 30  # seconds
    enabled: bool = True


class Player(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    name: str
    elevation: int = 0
    joined_at: float = Field(default_factory=now_ts)
    last_seen_at: Optional[float] = None
    last_option_index: Optional[OptionIndex] = None
    # Order in which players first crossed the summit; ties share a place.
    summit_place: Optional[int] = None
    summit_elevation: Optional[int] = None


class Answer(BaseModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    question_id: str
    question_index: int
    player_id: str
    option_index: OptionIndex
    answered_at: float  # server epoch seconds
    client_timestamp: Optional[float] = None
    is_correct: bool
    elevation_delta: int = 0
    elevation_at_answer: int = 0
    base_score: int = 0
    minority_bonus: int = 0
