"""Game error taxonomy.

Every write operation either succeeds completely or raises exactly one of the
errors below without mutating anything. ``kind`` is the stable identifier
clients key off; ``message`` is the default user-facing text.
"""

from __future__ import annotations

from typing import Optional


class GameError(Exception):
    kind = "InternalError"
    message = "Something went wrong. Please try again."
    status_code = 500

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InternalError(GameError):
    pass


class SessionNotFound(GameError):
    kind = "SessionNotFound"
    message = "Game not found. Check the code and try again."
    status_code = 404


class SessionAlreadyStarted(GameError):
    kind = "SessionAlreadyStarted"
    message = "This game has already started."
    status_code = 409


class GameEnded(GameError):
    kind = "GameEnded"
    message = "This game has already ended."
    status_code = 409


class NameTaken(GameError):
    kind = "NameTaken"
    message = "That name is already in use. Try another!"
    status_code = 409


class NoEnabledQuestions(GameError):
    kind = "NoEnabledQuestions"
    message = "Add at least one question before starting the game."
    status_code = 409


class InvalidPhaseTransition(GameError):
    kind = "InvalidPhaseTransition"
    message = "That step isn't available right now."
    status_code = 409


class AnswersNotAccepted(GameError):
    kind = "AnswersNotAccepted"
    message = "Wait for the host to show the answers first!"
    status_code = 409


class TimeLimitExceeded(GameError):
    kind = "TimeLimitExceeded"
    message = "Time's up! Your answer wasn't submitted in time."
    status_code = 409


class AlreadyAnswered(GameError):
    kind = "AlreadyAnswered"
    message = "You've already submitted your answer!"
    status_code = 409


class PlayerNotFound(GameError):
    kind = "PlayerNotFound"
    message = "Your session has expired. Please rejoin the game."
    status_code = 404


class QuestionNotFound(GameError):
    kind = "QuestionNotFound"
    message = "This question is no longer available."
    status_code = 404


class InvalidOptionIndex(GameError):
    kind = "InvalidOptionIndex"
    message = "That answer option doesn't exist."
    status_code = 400


class QuestionsLocked(GameError):
    kind = "QuestionsLocked"
    message = "Questions can only be changed before the game starts."
    status_code = 409


class InvalidQuestionMove(GameError):
    kind = "InvalidQuestionMove"
    message = "Cannot move the question further in that direction."
    status_code = 400


class InvalidName(GameError):
    kind = "InvalidName"
    message = "Please enter a name to join."
    status_code = 400
