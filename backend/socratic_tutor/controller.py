"""
Adaptive Socratic dialogue controller.

One controller drives one learning session: it asks the oracle for an intro
and questions, evaluates answers, hands out up to three hints per question,
explains after a strong answer and moves on after a strong answer or three
weaker attempts. Difficulty follows the streak policy in ``difficulty.py``.

A turn commits all-or-nothing. If an oracle call fails, nothing that depends
on its reply is applied, the failure is raised as a typed error and
``retry()`` re-issues the same call. The one exception is the student's
answer text, which is recorded as soon as it is submitted.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Type

from .difficulty import Difficulty, DifficultyAdjustment, DifficultyPolicy, Quality
from .errors import (
    EvaluationError,
    GenerationError,
    HintError,
    OracleError,
    TutorError,
    wrap_oracle_error,
)
from .oracle import TutorOracle
from .prompts import MAX_HINTS
from .session_state import (
    MSG_ANSWER,
    MSG_EXPLANATION,
    MSG_HINT,
    MSG_INTRO,
    MSG_QUESTION,
    ROLE_ASSISTANT,
    ROLE_USER,
    TURN_ANSWER,
    TURN_EXPLANATION,
    TURN_QUESTION,
    SessionState,
)

logger = logging.getLogger(__name__)

MIN_ANSWER_LENGTH = 20
MAX_ATTEMPTS = 3


class Phase(str, Enum):
    AWAITING_INTRO = "awaiting_intro"
    AWAITING_QUESTION = "awaiting_question"
    AWAITING_ANSWER = "awaiting_answer"
    EVALUATING = "evaluating"
    ADVANCING = "advancing"
    HINTING = "hinting"
    EXPLAINING = "explaining"


@dataclass
class TurnOutcome:
    quality: Quality
    feedback: str
    explanation: Optional[str] = None
    advanced: bool = False
    forced_advance: bool = False
    next_question: Optional[str] = None
    difficulty_change: Optional[DifficultyAdjustment] = None

    def to_dict(self) -> dict:
        return {
            "quality": self.quality.value,
            "feedback": self.feedback,
            "explanation": self.explanation,
            "advanced": self.advanced,
            "forcedAdvance": self.forced_advance,
            "nextQuestion": self.next_question,
            "difficultyEvent": self.difficulty_change.to_event() if self.difficulty_change else None,
        }


class DialogueController:
    def __init__(
        self,
        oracle: TutorOracle,
        *,
        policy: Optional[DifficultyPolicy] = None,
        advance_delay: float = 0.0,
        state: Optional[SessionState] = None,
    ) -> None:
        self.oracle = oracle
        self.policy = policy or DifficultyPolicy()
        self.advance_delay = advance_delay
        self.state = state or SessionState()
        self.content = ""
        self.topics: List[str] = []
        self.phase = Phase.AWAITING_INTRO
        self.lock = asyncio.Lock()
        self.last_error: Optional[TutorError] = None
        self._retry_op: Optional[Callable[[], Awaitable[Any]]] = None
        self._pending_answer: Optional[str] = None
        self._epoch = 0
        self._advance_cancelled = asyncio.Event()

    @classmethod
    def resume(
        cls,
        oracle: TutorOracle,
        state: SessionState,
        content: str,
        topics: Sequence[str],
        *,
        policy: Optional[DifficultyPolicy] = None,
        advance_delay: float = 0.0,
    ) -> "DialogueController":
        """Controller for a session whose state was rebuilt from storage."""
        controller = cls(oracle, policy=policy, advance_delay=advance_delay, state=state)
        controller.content = content
        controller.topics = list(topics)
        if state.current_question_text:
            controller.phase = Phase.AWAITING_ANSWER
        elif state.transcript:
            controller.phase = Phase.AWAITING_QUESTION
        return controller

    # ---- derived flags ----

    @property
    def started(self) -> bool:
        return self.phase is not Phase.AWAITING_INTRO

    @property
    def question_pending(self) -> bool:
        return self.phase is Phase.AWAITING_ANSWER and bool(self.state.current_question_text)

    @property
    def hints_enabled(self) -> bool:
        return self.question_pending and self.state.attempt_count > 0 and self.state.hint_count < MAX_HINTS

    @property
    def can_retry(self) -> bool:
        return self._retry_op is not None

    # ---- operations ----

    async def start_session(self, content: str, topics: Sequence[str]) -> str:
        """Open the session with an intro and the first question. Returns the intro."""
        if not content or not content.strip():
            raise OracleError("PDF content is empty")
        topics = list(topics)
        epoch = self._epoch
        try:
            intro = await self.oracle.generate_intro(content, Difficulty.BASIC, topics[0] if topics else None)
        except Exception as exc:
            raise self._failed(
                GenerationError, exc, "Failed to generate introduction",
                functools.partial(self.start_session, content, topics),
            )
        if epoch != self._epoch:
            return intro

        self.reset_session()
        self.content = content
        self.topics = topics
        self.state.started_at = datetime.utcnow()
        self.state.add_turn(ROLE_ASSISTANT, TURN_EXPLANATION, intro)
        self.state.add_message(MSG_INTRO, intro)
        self._set_phase(Phase.AWAITING_QUESTION)
        await self.request_next_question()
        return intro

    async def request_next_question(self) -> Optional[str]:
        if not self.content.strip():
            raise OracleError("PDF content is empty")
        if not self.started:
            raise OracleError("Session has not been started")
        if self.question_pending:
            return self.state.current_question_text

        state = self.state
        focus = state.focus_topic(self.topics)
        epoch = self._epoch
        try:
            question = await self.oracle.generate_question(self.content, state.difficulty, list(state.transcript), focus)
        except Exception as exc:
            raise self._failed(GenerationError, exc, "Failed to generate question", self.request_next_question)
        if epoch != self._epoch:
            return None

        if focus:
            state.mark_explored(focus)
        state.add_turn(ROLE_ASSISTANT, TURN_QUESTION, question)
        state.add_message(MSG_QUESTION, question)
        state.current_question_text = question
        state.questions_asked += 1
        self._clear_failure()
        self._set_phase(Phase.AWAITING_ANSWER)
        return question

    async def submit_answer(self, answer: str) -> Optional[TurnOutcome]:
        text = (answer or "").strip()
        if len(text) < MIN_ANSWER_LENGTH or not self.question_pending:
            return None
        if text != self._pending_answer:
            self.state.add_turn(ROLE_USER, TURN_ANSWER, text)
            self.state.add_message(MSG_ANSWER, text)
            self.state.last_answer = text
            self._pending_answer = text
        return await self._evaluate_pending()

    async def _evaluate_pending(self) -> Optional[TurnOutcome]:
        state = self.state
        answer = self._pending_answer
        question = state.current_question_text
        if answer is None or question is None:
            return None
        difficulty = state.difficulty
        epoch = self._epoch

        self._set_phase(Phase.EVALUATING)
        try:
            evaluation = await self.oracle.evaluate_answer(question, answer, self.content, difficulty)
        except Exception as exc:
            self._restore_phase(epoch)
            raise self._failed(EvaluationError, exc, "Failed to evaluate answer", self._evaluate_pending)

        explanation = None
        if evaluation.quality is Quality.STRONG and epoch == self._epoch:
            self._set_phase(Phase.EXPLAINING)
            try:
                explanation = await self.oracle.generate_explanation(question, answer, self.content, difficulty)
            except Exception as exc:
                self._restore_phase(epoch)
                raise self._failed(GenerationError, exc, "Failed to generate explanation", self._evaluate_pending)
        if epoch != self._epoch:
            return None

        self._pending_answer = None
        self._clear_failure()
        outcome = TurnOutcome(quality=evaluation.quality, feedback=evaluation.feedback)
        outcome.difficulty_change = self._record_quality(evaluation.quality)

        if evaluation.quality is Quality.STRONG:
            state.add_turn(ROLE_ASSISTANT, TURN_EXPLANATION, explanation)
            state.add_message(MSG_EXPLANATION, explanation)
            state.correct_answers += 1
            outcome.explanation = explanation
            outcome.advanced = True
        else:
            state.add_turn(ROLE_ASSISTANT, TURN_EXPLANATION, evaluation.feedback)
            state.add_message(MSG_EXPLANATION, evaluation.feedback)
            state.attempt_count += 1
            if state.attempt_count >= MAX_ATTEMPTS:
                logger.info("Question %d: %d attempts used, moving on", state.question_number, state.attempt_count)
                outcome.advanced = True
                outcome.forced_advance = True

        if not outcome.advanced:
            self._set_phase(Phase.AWAITING_ANSWER)
            return outcome

        state.complete_question()
        self._set_phase(Phase.ADVANCING)
        if await self._pause_before_advancing(epoch):
            self._set_phase(Phase.AWAITING_QUESTION)
            outcome.next_question = await self.request_next_question()
        return outcome

    async def request_hint(self) -> Optional[str]:
        state = self.state
        if state.hint_count >= MAX_HINTS or not self.question_pending:
            return None
        hint_number = state.hint_count + 1
        epoch = self._epoch

        self._set_phase(Phase.HINTING)
        try:
            hint = await self.oracle.generate_hint(
                state.current_question_text, state.last_answer or "", hint_number, self.content, state.difficulty,
            )
        except Exception as exc:
            self._restore_phase(epoch)
            raise self._failed(HintError, exc, "Failed to generate hint", self.request_hint)
        if epoch != self._epoch:
            return None

        state.hint_count = hint_number
        state.hints_used += 1
        state.add_message(MSG_HINT, f"Hint {hint_number}/{MAX_HINTS}: {hint}")
        # an unevaluated answer keeps its retry
        if self._retry_op == self.request_hint:
            self._clear_failure()
        self._set_phase(Phase.AWAITING_ANSWER)
        return hint

    def reset_session(self) -> None:
        self._epoch += 1
        self._advance_cancelled.set()
        self._advance_cancelled = asyncio.Event()
        self.state = SessionState()
        self.content = ""
        self.topics = []
        self.phase = Phase.AWAITING_INTRO
        self._pending_answer = None
        self._clear_failure()

    async def retry(self) -> Any:
        """Re-issue the last failed operation with the same inputs. None when nothing failed."""
        op = self._retry_op
        if op is None:
            return None
        return await op()

    def to_dict(self) -> dict:
        data = self.state.to_dict()
        data.update(
            {
                "phase": self.phase.value,
                "hintsEnabled": self.hints_enabled,
                "canRetry": self.can_retry,
                "lastError": self.last_error.message if self.last_error else None,
            }
        )
        return data

    # ---- internals ----

    def _record_quality(self, quality: Quality) -> Optional[DifficultyAdjustment]:
        state = self.state
        state.push_quality(quality)
        adjustment = self.policy.check_adjustment(state.quality_window, state.difficulty)
        if not adjustment.should_adjust:
            return None
        state.difficulty = adjustment.current
        state.quality_window.clear()
        state.events.append(adjustment.to_event())
        logger.info(
            "Difficulty %s: %s -> %s (%s)",
            adjustment.direction, adjustment.previous.label, adjustment.current.label, adjustment.reason,
        )
        return adjustment

    async def _pause_before_advancing(self, epoch: int) -> bool:
        """Wait out the advance delay. False when a reset cancelled it."""
        if self.advance_delay > 0:
            cancelled = self._advance_cancelled
            try:
                await asyncio.wait_for(cancelled.wait(), timeout=self.advance_delay)
            except asyncio.TimeoutError:
                pass
        return epoch == self._epoch

    def _failed(
        self,
        error_cls: Type[OracleError],
        exc: BaseException,
        context: str,
        retry_op: Callable[[], Awaitable[Any]],
    ) -> TutorError:
        error = wrap_oracle_error(error_cls, exc, context)
        if error is not exc:
            error.__cause__ = exc
        self.last_error = error
        self._retry_op = retry_op
        logger.warning("%s (phase=%s, retry_later=%s): %s", type(error).__name__, self.phase.value, error.retry_later, error.message)
        return error

    def _clear_failure(self) -> None:
        self.last_error = None
        self._retry_op = None

    def _restore_phase(self, epoch: int) -> None:
        if epoch == self._epoch:
            self.phase = Phase.AWAITING_ANSWER

    def _set_phase(self, phase: Phase) -> None:
        if phase is not self.phase:
            logger.info("Phase %s -> %s", self.phase.value, phase.value)
            self.phase = phase
