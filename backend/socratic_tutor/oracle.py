"""
The tutor oracle: everything the dialogue needs from a generative model.

``TutorOracle`` is the contract the controller and the routers depend on.
``GeminiTutorOracle`` fulfils it with one templated prompt per call against
the Gemini REST API and normalizes the replies.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, Type

from . import prompts
from .difficulty import Difficulty, Quality
from .errors import (
    AnalysisError,
    EvaluationError,
    ExtractionError,
    GenerationError,
    HintError,
    OracleError,
    TutorError,
    wrap_oracle_error,
)
from .gemini_client import GeminiClient
from .session_state import ConversationTurn
from .text_cleanup import (
    clean_explanation,
    clean_hint,
    clean_intro,
    clean_question,
    extract_json_object,
    guard_feedback,
)

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
MAX_TOPICS = 7
MAX_CONCEPTS = 15


@dataclass
class ContentAnalysis:
    topics: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)


@dataclass
class Evaluation:
    quality: Quality
    feedback: str


class TutorOracle(abc.ABC):
    @abc.abstractmethod
    async def extract_text(self, document: bytes, mime_type: str = PDF_MIME_TYPE) -> str:
        ...

    @abc.abstractmethod
    async def analyze_content(self, text: str) -> ContentAnalysis:
        ...

    @abc.abstractmethod
    async def generate_intro(self, text: str, difficulty: Difficulty, focus_topic: Optional[str] = None) -> str:
        ...

    @abc.abstractmethod
    async def generate_question(
        self,
        text: str,
        difficulty: Difficulty,
        history: Sequence[ConversationTurn],
        focus_topic: Optional[str] = None,
    ) -> str:
        ...

    @abc.abstractmethod
    async def evaluate_answer(self, question: str, answer: str, text: str, difficulty: Difficulty) -> Evaluation:
        ...

    @abc.abstractmethod
    async def generate_explanation(self, question: str, answer: str, text: str, difficulty: Difficulty) -> str:
        ...

    @abc.abstractmethod
    async def generate_hint(self, question: str, answer: str, hint_number: int, text: str, difficulty: Difficulty) -> str:
        ...

    async def aclose(self) -> None:
        return None


def _require_text(text: str, error_cls: Type[OracleError]) -> None:
    if not text or not text.strip():
        raise error_cls("PDF content is empty")


class GeminiTutorOracle(TutorOracle):
    def __init__(self, client: GeminiClient) -> None:
        self.client = client

    async def _call(
        self,
        error_cls: Type[OracleError],
        context: str,
        request: Callable[[], Awaitable[str]],
    ) -> str:
        try:
            reply = await request()
        except Exception as exc:
            if not isinstance(exc, TutorError):
                logger.warning("%s: unexpected failure %r", context, exc)
            wrapped = wrap_oracle_error(error_cls, exc, context)
            if wrapped is exc:
                raise
            raise wrapped from exc
        reply = (reply or "").strip()
        if not reply:
            raise error_cls(f"{context}: model returned an empty reply")
        return reply

    async def extract_text(self, document: bytes, mime_type: str = PDF_MIME_TYPE) -> str:
        if mime_type != PDF_MIME_TYPE or not document.startswith(b"%PDF"):
            raise ExtractionError("Only PDF documents can be processed")
        text = await self._call(
            ExtractionError,
            "Failed to extract text from PDF",
            lambda: self.client.generate_with_document(prompts.extraction_prompt(), document, mime_type=mime_type),
        )
        return text

    async def analyze_content(self, text: str) -> ContentAnalysis:
        _require_text(text, AnalysisError)
        reply = await self._call(
            AnalysisError,
            "Failed to analyze PDF content",
            lambda: self.client.generate(prompts.analysis_prompt(text)),
        )
        try:
            data = extract_json_object(reply)
        except ValueError as exc:
            raise AnalysisError(f"Failed to parse analysis response: {exc}") from exc
        topics = data.get("topics")
        concepts = data.get("concepts")
        if not isinstance(topics, list) or not isinstance(concepts, list):
            raise AnalysisError("Failed to parse analysis response: topics and concepts must be lists")
        analysis = ContentAnalysis(
            topics=[t.strip() for t in topics if isinstance(t, str) and t.strip()][:MAX_TOPICS],
            concepts=[c.strip() for c in concepts if isinstance(c, str) and c.strip()][:MAX_CONCEPTS],
        )
        if not analysis.topics:
            logger.warning("Content analysis returned no topics")
        return analysis

    async def generate_intro(self, text: str, difficulty: Difficulty, focus_topic: Optional[str] = None) -> str:
        _require_text(text, GenerationError)
        level = Difficulty.parse(difficulty)
        reply = await self._call(
            GenerationError,
            "Failed to generate introduction",
            lambda: self.client.generate(prompts.intro_prompt(text, level, focus_topic)),
        )
        return clean_intro(reply)

    async def generate_question(
        self,
        text: str,
        difficulty: Difficulty,
        history: Sequence[ConversationTurn],
        focus_topic: Optional[str] = None,
    ) -> str:
        _require_text(text, GenerationError)
        level = Difficulty.parse(difficulty)
        reply = await self._call(
            GenerationError,
            "Failed to generate question",
            lambda: self.client.generate(prompts.question_prompt(text, level, history, focus_topic)),
        )
        question = clean_question(reply)
        if not question:
            raise GenerationError("Generated question is empty")
        return question

    async def evaluate_answer(self, question: str, answer: str, text: str, difficulty: Difficulty) -> Evaluation:
        _require_text(text, EvaluationError)
        level = Difficulty.parse(difficulty)
        reply = await self._call(
            EvaluationError,
            "Failed to evaluate answer",
            lambda: self.client.generate(prompts.evaluation_prompt(question, answer, text, level)),
        )
        try:
            data = extract_json_object(reply)
        except ValueError as exc:
            raise EvaluationError(f"Failed to parse evaluation response: {exc}") from exc
        try:
            quality = Quality(data.get("quality"))
        except ValueError:
            raise EvaluationError("Invalid quality value in evaluation response")
        feedback = data.get("feedback")
        if not isinstance(feedback, str) or not feedback.strip():
            raise EvaluationError("Invalid feedback in evaluation response")
        return Evaluation(quality=quality, feedback=guard_feedback(feedback))

    async def generate_explanation(self, question: str, answer: str, text: str, difficulty: Difficulty) -> str:
        _require_text(text, GenerationError)
        level = Difficulty.parse(difficulty)
        reply = await self._call(
            GenerationError,
            "Failed to generate explanation",
            lambda: self.client.generate(prompts.explanation_prompt(question, answer, text, level)),
        )
        return clean_explanation(reply)

    async def generate_hint(self, question: str, answer: str, hint_number: int, text: str, difficulty: Difficulty) -> str:
        _require_text(text, HintError)
        level = Difficulty.parse(difficulty)
        prompt = prompts.hint_prompt(question, answer, hint_number, text, level)
        reply = await self._call(HintError, "Failed to generate hint", lambda: self.client.generate(prompt))
        hint = clean_hint(reply)
        if not hint:
            raise HintError("Generated hint is empty")
        return hint

    async def aclose(self) -> None:
        await self.client.aclose()
