from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, Field, StringConstraints

from .models import Player, Question, QuestionPhase, Session
from .phases import derive_phase, next_action

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class CreateSessionIn(BaseModel):
    host_id: NonEmptyStr


class CreateSessionOut(BaseModel):
    id: str
    code: str
    host_token: str


class PublicSessionOut(BaseModel):
    id: str
    code: str
    status: str
    phase: QuestionPhase
    next_action: Optional[str]
    current_question_index: int
    answers_shown_at: Optional[float]
    created_at: float

    @classmethod
    def from_session(cls, s: Session) -> "PublicSessionOut":
        phase = derive_phase(s)
        return cls(
            id=s.id,
            code=s.code,
            status=s.status.value,
            phase=phase,
            next_action=next_action(phase),
            current_question_index=s.current_question_index,
            answers_shown_at=s.answers_shown_at,
            created_at=s.created_at,
        )


class HostSessionOut(PublicSessionOut):
    host_id: str
    host_token: str

    @classmethod
    def from_session(cls, s: Session) -> "HostSessionOut":
        public = PublicSessionOut.from_session(s)
        return cls(**public.model_dump(), host_id=s.host_id, host_token=s.host_token)


class ResumeHostIn(BaseModel):
    code: NonEmptyStr
    host_token: NonEmptyStr


class QuestionIn(BaseModel):
    text: NonEmptyStr
    options: List[NonEmptyStr] = Field(min_length=2)
    correct_index: int = Field(ge=0)
    time_limit: Optional[int] = Field(default=None, gt=0)


class QuestionPatchIn(BaseModel):
    text: Optional[NonEmptyStr] = None
    options: Optional[List[NonEmptyStr]] = Field(default=None, min_length=2)
    correct_index: Optional[int] = Field(default=None, ge=0)
    time_limit: Optional[int] = Field(default=None, gt=0)


class QuestionEnabledIn(BaseModel):
    enabled: bool


class QuestionMoveIn(BaseModel):
    direction: Literal["up", "down"]


class ImportQuestionsIn(BaseModel):
    questions: List[QuestionIn] = Field(min_length=1)


class QuestionsOut(BaseModel):
    questions: List[Question]


class AdvancePhaseIn(BaseModel):
    expected_phase: QuestionPhase


class JoinIn(BaseModel):
    code: NonEmptyStr
    name: NonEmptyStr


class JoinOut(BaseModel):
    session_id: str
    player: Player


class AnswerIn(BaseModel):
    session_id: str
    question_index: int = Field(ge=0)
    player_id: str
    option_index: int
    client_timestamp: Optional[float] = None


class AnswerOut(BaseModel):
    accepted: bool = True
    answer_id: str
    question_index: int
    option_index: int
    answered_at: float
