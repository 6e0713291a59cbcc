from __future__ import annotations

import asyncio
import logging
import random
import secrets
from typing import Any, Callable, Dict, Iterable, List, Optional

from pymongo.errors import DuplicateKeyError

from . import projections
from .db import Settings, db, settings as default_settings
from .errors import (
    AlreadyAnswered,
    AnswersNotAccepted,
    GameEnded,
    InternalError,
    InvalidName,
    InvalidOptionIndex,
    InvalidPhaseTransition,
    InvalidQuestionMove,
    NameTaken,
    NoEnabledQuestions,
    PlayerNotFound,
    QuestionNotFound,
    QuestionsLocked,
    SessionAlreadyStarted,
    SessionNotFound,
    TimeLimitExceeded,
)
from .events import EventStore, event_store
from .models import Answer, Player, Question, QuestionPhase, Session, SessionStatus
from .phases import derive_phase, plan_transition
from .scoring import ScoringConfig, elevation_delta, fold_elevations, score_reveal, summit_places
from .utils import clean_name, generate_code, name_key, normalise_code, now_ts

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 50


class GameController:
    def __init__(
        self,
        database: Any = None,
        events: Optional[EventStore] = None,
        clock: Callable[[], float] = now_ts,
        code_generator: Callable[[], str] = generate_code,
        config: Optional[Settings] = None,
    ):
        self.db = database if database is not None else db
        if events is None:
            events = event_store if database is None else EventStore(self.db, clock=clock)
        self.events = events
        self.clock = clock
        self.code_generator = code_generator
        self.settings = config or default_settings
        self.scoring = ScoringConfig.from_settings(self.settings)
        self.locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, session_id: str) -> asyncio.Lock:
        self.locks.setdefault(session_id, asyncio.Lock())
        return self.locks[session_id]

    def _release_lock(self, session_id: str):
        # Finished and deleted sessions take no more writes that need ordering.
        self.locks.pop(session_id, None)

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------

    async def get_session(self, session_id: str) -> Session | None:
        doc = await self.db.sessions.find_one({"id": session_id})
        return Session(**doc) if doc else None

    async def get_session_by_code(self, code: str) -> Session | None:
        doc = await self.db.sessions.find_one({"code": normalise_code(code)})
        return Session(**doc) if doc else None

    async def list_sessions_by_host(self, host_id: str) -> List[Session]:
        docs = await self.db.sessions.find(
            {"host_id": host_id, "status": {"$ne": SessionStatus.FINISHED}}
        ).sort("created_at", -1).to_list()
        return [Session(**d) for d in docs]

    async def get_session_for_host(self, code: str, host_token: str) -> Session | None:
        """Look a session up by join code, only if ``host_token`` is its host token."""
        s = await self.get_session_by_code(code)
        if not s or not host_token:
            return None
        if not secrets.compare_digest(host_token.encode(), s.host_token.encode()):
            return None
        return s

    async def _require_session(self, session_id: str) -> Session:
        s = await self.get_session(session_id)
        if not s:
            raise SessionNotFound()
        return s

    async def _set_session(self, session_id: str, fields: Dict[str, Any]):
        await self.db.sessions.update_one({"id": session_id}, {"$set": fields})

    async def list_questions(self, session_id: str) -> List[Question]:
        docs = await self.db.questions.find({"session_id": session_id}).sort("order", 1).to_list()
        return [Question(**d) for d in docs]

    async def enabled_questions(self, session_id: str) -> List[Question]:
        return [q for q in await self.list_questions(session_id) if q.enabled]

    async def _current_question(self, s: Session) -> tuple[Question | None, int]:
        questions = await self.enabled_questions(s.id)
        if 0 <= s.current_question_index < len(questions):
            return questions[s.current_question_index], len(questions)
        return None, len(questions)

    async def get_player(self, player_id: str) -> Player | None:
        doc = await self.db.players.find_one({"id": player_id})
        return Player(**doc) if doc else None

    async def list_players_by_session(self, session_id: str) -> List[Player]:
        docs = await self.db.players.find({"session_id": session_id}).sort("joined_at", 1).to_list()
        return [Player(**d) for d in docs]

    async def _answers_for(self, session_id: str, question_index: int) -> List[Answer]:
        docs = await self.db.answers.find(
            {"session_id": session_id, "question_index": question_index}
        ).to_list()
        return [Answer(**d) for d in docs]

    async def list_answers(self, session_id: str) -> List[Answer]:
        docs = await self.db.answers.find({"session_id": session_id}).to_list()
        return [Answer(**d) for d in docs]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, host_id: str) -> Session:
        for _ in range(MAX_CODE_ATTEMPTS):
            s = Session(code=normalise_code(self.code_generator()), host_id=host_id, created_at=self.clock())
            s.updated_at = s.created_at
            try:
                # The unique index on ``code`` is the collision check.
                await self.db.sessions.insert_one(s.model_dump())
            except DuplicateKeyError:
                continue
            logger.info("Created session %s with code %s for host %s", s.id, s.code, host_id)
            await self.events.append(s.id, {"type": "session_created", "code": s.code})
            return s

        logger.error("Could not allocate a unique join code after %d attempts", MAX_CODE_ATTEMPTS)
        raise InternalError()

    async def delete_session(self, session_id: str):
        async with self._lock(session_id):
            s = await self._require_session(session_id)
            if s.status == SessionStatus.ACTIVE:
                raise SessionAlreadyStarted("A live game cannot be deleted.")

            await self.db.answers.delete_many({"session_id": session_id})
            await self.db.players.delete_many({"session_id": session_id})
            await self.db.questions.delete_many({"session_id": session_id})
            await self.db.sessions.delete_one({"id": session_id})
            await self.events.clear(session_id)
            logger.info("Deleted session %s", session_id)
        self._release_lock(session_id)

    async def start_session(self, session_id: str) -> Session:
        async with self._lock(session_id):
            s = await self._require_session(session_id)
            return await self._start(s)

    async def _start(self, s: Session) -> Session:
        if s.status != SessionStatus.LOBBY:
            raise SessionAlreadyStarted()
        if not await self.enabled_questions(s.id):
            raise NoEnabledQuestions()

        # Reset per-game state so every game starts from a clean slate.
        await self.db.answers.delete_many({"session_id": s.id})
        await self.db.players.update_many(
            {"session_id": s.id},
            {"$set": {"elevation": 0, "last_option_index": None, "summit_place": None, "summit_elevation": None}},
        )

        now = self.clock()
        await self._set_session(
            s.id,
            {
                "status": SessionStatus.ACTIVE,
                "current_question_index": -1,
                "question_phase": None,
                "answers_shown_at": None,
                "revealed_through": -1,
                "updated_at": now,
            },
        )
        logger.info("Session %s started", s.id)
        await self.events.append(s.id, {"type": "session_started", "phase": QuestionPhase.PRE_GAME.value})
        return await self._require_session(s.id)

    async def advance_phase(self, session_id: str, expected_phase: QuestionPhase | str) -> Session:
        """Move the session one step forward from ``expected_phase``.

        ``expected_phase`` is an optimistic check: if two host tabs race, the
        second one sees a different phase and fails with
        ``InvalidPhaseTransition`` instead of skipping a step.
        """
        expected = QuestionPhase(expected_phase)
        async with self._lock(session_id):
            s = await self._require_session(session_id)
            if expected == QuestionPhase.LOBBY and derive_phase(s) == QuestionPhase.LOBBY:
                return await self._start(s)

            questions = await self.enabled_questions(session_id)
            now = self.clock()
            update = plan_transition(s, expected, len(questions), now)
            if "revealed_through" in update and self.scoring.priced_at_reveal:
                await self._settle_reveal(s, len(questions))
            await self._set_session(session_id, update)

            if "revealed_through" in update:
                await self._apply_elevations(session_id, int(update["revealed_through"]))

            updated = await self._require_session(session_id)
            phase = derive_phase(updated)
            logger.info(
                "Session %s: %s -> %s (question %d)",
                session_id,
                expected.value,
                phase.value,
                updated.current_question_index,
            )

            if phase == QuestionPhase.FINISHED:
                await self.events.append(session_id, {"type": "session_finished"})
            else:
                await self.events.append(
                    session_id,
                    {
                        "type": "phase_changed",
                        "phase": phase.value,
                        "question_index": updated.current_question_index,
                    },
                )
        if phase == QuestionPhase.FINISHED:
            self._release_lock(session_id)
        return updated

    async def next_question(self, session_id: str) -> Session:
        s = await self._require_session(session_id)
        phase = derive_phase(s)
        if phase not in (QuestionPhase.PRE_GAME, QuestionPhase.RESULTS):
            raise InvalidPhaseTransition(f"Cannot move to the next question from {phase.value}")
        return await self.advance_phase(session_id, phase)

    async def show_answers(self, session_id: str) -> Session:
        return await self.advance_phase(session_id, QuestionPhase.QUESTION_SHOWN)

    async def reveal_answer(self, session_id: str) -> Session:
        return await self.advance_phase(session_id, QuestionPhase.ANSWERS_SHOWN)

    async def show_results(self, session_id: str) -> Session:
        return await self.advance_phase(session_id, QuestionPhase.REVEALED)

    async def finish_session(self, session_id: str) -> Session:
        async with self._lock(session_id):
            s = await self._require_session(session_id)
            if s.status == SessionStatus.FINISHED:
                raise GameEnded()
            if s.status == SessionStatus.LOBBY:
                raise InvalidPhaseTransition("Cannot finish a game that has not started")

            await self._set_session(
                session_id,
                {
                    "status": SessionStatus.FINISHED,
                    "question_phase": None,
                    "answers_shown_at": None,
                    "updated_at": self.clock(),
                },
            )
            logger.info("Session %s finished by host", session_id)
            await self.events.append(session_id, {"type": "session_finished"})
            finished = await self._require_session(session_id)
        self._release_lock(session_id)
        return finished

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    def _check_question(self, options: List[str], correct_index: int):
        if not 0 <= correct_index < len(options):
            raise InvalidOptionIndex(f"Correct option must be between 0 and {len(options) - 1}")

    async def _editable_session(self, session_id: str) -> Session:
        s = await self._require_session(session_id)
        if s.status != SessionStatus.LOBBY:
            raise QuestionsLocked()
        return s

    async def _question_session_id(self, question_id: str) -> str:
        doc = await self.db.questions.find_one({"id": question_id})
        if not doc:
            raise QuestionNotFound()
        return doc["session_id"]

    async def add_question(
        self,
        session_id: str,
        text: str,
        options: List[str],
        correct_index: int,
        time_limit: Optional[int] = None,
    ) -> Question:
        async with self._lock(session_id):
            await self._editable_session(session_id)
            self._check_question(options, correct_index)

            existing = await self.list_questions(session_id)
            order = max((q.order for q in existing), default=-1) + 1
            q = Question(
                session_id=session_id,
                text=text,
                options=list(options),
                correct_index=correct_index,
                order=order,
                time_limit=time_limit or self.settings.DEFAULT_TIME_LIMIT,
            )
            await self.db.questions.insert_one(q.model_dump())
            await self.events.append(session_id, {"type": "questions_changed"})
            return q

    async def update_question(
        self,
        question_id: str,
        *,
        text: Optional[str] = None,
        options: Optional[List[str]] = None,
        correct_index: Optional[int] = None,
        time_limit: Optional[int] = None,
    ) -> Question:
        session_id = await self._question_session_id(question_id)
        async with self._lock(session_id):
            await self._editable_session(session_id)
            current = Question(**(await self.db.questions.find_one({"id": question_id})))

            changes: Dict[str, Any] = {}
            if text is not None:
                changes["text"] = text
            if options is not None:
                changes["options"] = list(options)
            if correct_index is not None:
                changes["correct_index"] = correct_index
            if time_limit is not None:
                changes["time_limit"] = time_limit

            merged = current.model_copy(update=changes)
            self._check_question(merged.options, merged.correct_index)

            await self.db.questions.update_one({"id": question_id}, {"$set": changes})
            await self.events.append(session_id, {"type": "questions_changed"})
            return merged

    async def remove_question(self, question_id: str):
        session_id = await self._question_session_id(question_id)
        async with self._lock(session_id):
            await self._editable_session(session_id)
            await self.db.questions.delete_one({"id": question_id})
            await self.events.append(session_id, {"type": "questions_changed"})

    async def set_question_enabled(self, question_id: str, enabled: bool) -> Question:
        session_id = await self._question_session_id(question_id)
        async with self._lock(session_id):
            await self._editable_session(session_id)
            await self.db.questions.update_one({"id": question_id}, {"$set": {"enabled": enabled}})
            await self.events.append(session_id, {"type": "questions_changed"})
            return Question(**(await self.db.questions.find_one({"id": question_id})))

    async def toggle_question(self, question_id: str) -> Question:
        doc = await self.db.questions.find_one({"id": question_id})
        if not doc:
            raise QuestionNotFound()
        return await self.set_question_enabled(question_id, not doc.get("enabled", True))

    async def move_question(self, question_id: str, direction: str) -> List[Question]:
        session_id = await self._question_session_id(question_id)
        async with self._lock(session_id):
            await self._editable_session(session_id)
            ordered = await self.list_questions(session_id)
            index = next((i for i, q in enumerate(ordered) if q.id == question_id), None)
            if index is None:
                raise QuestionNotFound()
            target = index - 1 if direction == "up" else index + 1
            if direction not in ("up", "down") or not 0 <= target < len(ordered):
                raise InvalidQuestionMove()

            a, b = ordered[index], ordered[target]
            await self.db.questions.update_one({"id": a.id}, {"$set": {"order": b.order}})
            await self.db.questions.update_one({"id": b.id}, {"$set": {"order": a.order}})
            await self.events.append(session_id, {"type": "questions_changed"})
            return await self.list_questions(session_id)

    async def shuffle_questions(self, session_id: str) -> List[Question]:
        """Put the session's questions in a random order (lobby only)."""
        async with self._lock(session_id):
            await self._editable_session(session_id)
            ordered = await self.list_questions(session_id)
            orders = [q.order for q in ordered]
            random.shuffle(orders)
            for q, order in zip(ordered, orders):
                await self.db.questions.update_one({"id": q.id}, {"$set": {"order": order}})
            await self.events.append(session_id, {"type": "questions_changed"})
            logger.info("Shuffled %d questions in session %s", len(ordered), session_id)
            return await self.list_questions(session_id)

    async def import_questions(self, session_id: str, items: Iterable[Dict[str, Any]]) -> List[Question]:
        """Replace the session's questions with ``items``.

        Each item carries ``text``, ``options``, ``correct_index`` and an
        optional ``time_limit``, the same shape ``export_questions`` produces.
        """
        async with self._lock(session_id):
            await self._editable_session(session_id)
            new_questions: List[Question] = []
            for order, item in enumerate(items):
                self._check_question(item["options"], item["correct_index"])
                new_questions.append(
                    Question(
                        session_id=session_id,
                        text=item["text"],
                        options=list(item["options"]),
                        correct_index=item["correct_index"],
                        order=order,
                        time_limit=item.get("time_limit") or self.settings.DEFAULT_TIME_LIMIT,
                    )
                )

            await self.db.questions.delete_many({"session_id": session_id})
            await self.db.questions.insert_many([q.model_dump() for q in new_questions])
            await self.events.append(session_id, {"type": "questions_changed"})
            return new_questions

    async def export_questions(self, session_id: str) -> List[Dict[str, Any]]:
        return [
            {
                "text": q.text,
                "options": list(q.options),
                "correct_index": q.correct_index,
                "time_limit": q.time_limit,
            }
            for q in await self.list_questions(session_id)
        ]

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    async def join_session(self, code: str, name: str) -> Player:
        found = await self.get_session_by_code(code)
        if not found:
            raise SessionNotFound()

        async with self._lock(found.id):
            s = await self._require_session(found.id)
            if s.status == SessionStatus.FINISHED:
                raise GameEnded()

            display_name = clean_name(name, self.settings.MAX_NAME_LENGTH)
            if not display_name:
                raise InvalidName()

            now = self.clock()
            key = name_key(display_name)
            for existing in await self.list_players_by_session(s.id):
                if name_key(existing.name) != key:
                    continue
                if projections.is_active(existing, now, self.settings.PRESENCE_TIMEOUT_SECONDS):
                    raise NameTaken()
                # The previous holder went quiet: hand the record back so a
                # refreshed tab keeps its elevation.
                await self.db.players.update_one({"id": existing.id}, {"$set": {"last_seen_at": now}})
                logger.info("Player %s rejoined session %s", existing.id, s.id)
                return existing.model_copy(update={"last_seen_at": now})

            # Returning players were let in above; only new names are late joiners.
            if s.status == SessionStatus.ACTIVE and not self.settings.ALLOW_LATE_JOIN:
                raise SessionAlreadyStarted()

            p = Player(session_id=s.id, name=display_name, joined_at=now, last_seen_at=now)
            await self.db.players.insert_one(p.model_dump())
            logger.info("Player %s (%s) joined session %s", p.id, p.name, s.id)
            await self.events.append(s.id, {"type": "player_joined", "player_id": p.id})
            return p

    async def heartbeat(self, player_id: str):
        await self.db.players.update_one({"id": player_id}, {"$set": {"last_seen_at": self.clock()}})

    async def disconnect(self, player_id: str):
        await self.db.players.update_one({"id": player_id}, {"$set": {"last_seen_at": 0.0}})

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def submit_answer(
        self,
        session_id: str,
        question_index: int,
        player_id: str,
        option_index: int,
        client_timestamp: Optional[float] = None,
    ) -> Answer:
        # Serialized with phase transitions, so an answer can never land after
        # the reveal that scores its question.
        async with self._lock(session_id):
            s = await self.get_session(session_id)
            if not s:
                raise SessionNotFound()
            if s.status != SessionStatus.ACTIVE:
                raise AnswersNotAccepted()

            phase = derive_phase(s)
            if phase != QuestionPhase.ANSWERS_SHOWN or question_index != s.current_question_index:
                raise AnswersNotAccepted()

            q, _ = await self._current_question(s)
            if q is None:
                raise AnswersNotAccepted()

            player = await self.get_player(player_id)
            if not player or player.session_id != session_id:
                raise PlayerNotFound()
            if not 0 <= option_index < len(q.options):
                raise InvalidOptionIndex(f"Invalid option index: must be 0-{len(q.options) - 1}")

            now = self.clock()
            elapsed = now - (s.answers_shown_at if s.answers_shown_at is not None else now)
            if elapsed >= q.time_limit:
                logger.debug("Late answer from %s on question %d (%.1fs)", player_id, question_index, elapsed)
                raise TimeLimitExceeded()

            key = {"session_id": session_id, "question_index": question_index, "player_id": player_id}
            if await self.db.answers.find_one(key):
                logger.debug("Duplicate answer from %s on question %d", player_id, question_index)
                raise AlreadyAnswered()

            is_correct = option_index == q.correct_index
            answer = Answer(
                session_id=session_id,
                question_id=q.id,
                question_index=question_index,
                player_id=player_id,
                option_index=option_index,
                answered_at=now,
                client_timestamp=client_timestamp,
                is_correct=is_correct,
                elevation_delta=elevation_delta(is_correct, elapsed, self.scoring),
                elevation_at_answer=player.elevation,
            )
            try:
                await self.db.answers.insert_one(answer.model_dump())
            except DuplicateKeyError as exc:
                raise AlreadyAnswered() from exc

            await self.db.players.update_one({"id": player_id}, {"$set": {"last_option_index": option_index}})
            answered = await self.db.answers.count_documents(
                {"session_id": session_id, "question_index": question_index}
            )
            await self.events.append(
                session_id,
                {"type": "answer_submitted", "question_index": question_index, "answered_count": answered},
            )
            return answer

    # ------------------------------------------------------------------
    # Elevation
    # ------------------------------------------------------------------

    async def _settle_reveal(self, s: Session, question_count: int):
        """Price the current question's answers now that the distribution is final."""
        q, _ = await self._current_question(s)
        if q is None:
            return
        answers = await self._answers_for(s.id, s.current_question_index)
        elevations = {p.id: p.elevation for p in await self.list_players_by_session(s.id)}
        scores = score_reveal(
            answers,
            q.correct_index,
            elevations,
            questions_remaining=question_count - s.current_question_index - 1,
            total_questions=question_count,
            config=self.scoring,
        )
        for answer_id, score in scores.items():
            await self.db.answers.update_one({"id": answer_id}, {"$set": score._asdict()})

    async def _apply_elevations(self, session_id: str, revealed_through: int):
        totals = fold_elevations(await self.list_answers(session_id), revealed_through)
        players = await self.list_players_by_session(session_id)
        before = {p.id: p.elevation for p in players}
        after = {p.id: max(p.elevation, totals.get(p.id, 0)) for p in players}
        places = summit_places(
            before,
            after,
            [p.summit_place for p in players if p.summit_place is not None],
            self.scoring.summit_elevation,
        )

        for p in players:
            # $max keeps elevation monotonic even if a reveal is replayed.
            update: Dict[str, Any] = {"$max": {"elevation": totals.get(p.id, 0)}}
            if p.id in places:
                update["$set"] = {"summit_place": places[p.id], "summit_elevation": after[p.id]}
            await self.db.players.update_one({"id": p.id}, update)

        logger.info(
            "Session %s: elevations folded through question %d for %d players",
            session_id,
            revealed_through,
            len(totals),
        )
        if places:
            logger.info("Session %s: summit places %s", session_id, places)

    async def replay_elevations(self, session_id: str) -> Dict[str, int] | None:
        """Recompute every player's elevation from the answer ledger alone."""
        s = await self.get_session(session_id)
        if not s:
            return None
        totals = fold_elevations(await self.list_answers(session_id), s.revealed_through)
        return {p.id: totals.get(p.id, 0) for p in await self.list_players_by_session(session_id)}

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    async def get_current_question(self, session_id: str) -> projections.CurrentQuestion | None:
        s = await self.get_session(session_id)
        if not s:
            return None
        q, total = await self._current_question(s)
        return projections.current_question(s, q, total)

    async def get_player_rope_state(self, session_id: str, player_id: str) -> projections.PlayerRopeState | None:
        s = await self.get_session(session_id)
        if not s:
            return None
        q, _ = await self._current_question(s)
        if q is None:
            return None
        answers = await self._answers_for(session_id, s.current_question_index)
        total_players = await self.db.players.count_documents({"session_id": session_id})
        return projections.player_rope_state(s, q, answers, player_id, total_players, self.clock())

    async def get_rope_climbing_state(self, session_id: str) -> projections.RopeClimbingState | None:
        s = await self.get_session(session_id)
        if not s:
            return None
        q, _ = await self._current_question(s)
        if q is None:
            return None
        return projections.rope_climbing_state(
            s,
            q,
            await self.list_players_by_session(session_id),
            await self._answers_for(session_id, s.current_question_index),
            self.clock(),
            self.settings.PRESENCE_TIMEOUT_SECONDS,
        )

    async def get_question_results(self, session_id: str) -> projections.QuestionResults | None:
        s = await self.get_session(session_id)
        if not s:
            return None
        q, _ = await self._current_question(s)
        if q is None:
            return None
        return projections.question_results(s, q, await self._answers_for(session_id, s.current_question_index))

    async def get_leaderboard_summary(
        self, session_id: str, limit: Optional[int] = None, player_id: Optional[str] = None
    ) -> projections.LeaderboardSummary | None:
        if not await self.get_session(session_id):
            return None
        return projections.leaderboard_summary(
            await self.list_players_by_session(session_id),
            self.settings.DEFAULT_LEADERBOARD_LIMIT if limit is None else limit,
            requesting_player_id=player_id,
            summit_elevation=self.settings.SUMMIT_ELEVATION,
        )

    async def get_player_context(
        self, session_id: str, player_id: str, elevation_range: Optional[int] = None
    ) -> projections.PlayerContext | None:
        if not await self.get_session(session_id):
            return None
        return projections.player_context(
            await self.list_players_by_session(session_id),
            player_id,
            self.settings.DEFAULT_ELEVATION_RANGE if elevation_range is None else elevation_range,
        )


controller = GameController()
