"""Gemini oracle adapter: prompt inputs, reply parsing and error typing."""
from __future__ import annotations

from typing import List

import pytest

from fakes import LECTURE_TEXT, PDF_BYTES
from socratic_tutor.difficulty import Difficulty, Quality
from socratic_tutor.errors import (
    AnalysisError,
    EvaluationError,
    ExtractionError,
    GenerationError,
    OracleError,
    ValidationError,
)
from socratic_tutor.oracle import GeminiTutorOracle
from socratic_tutor.prompts import TURN_CONTEXT_CHARS, question_prompt
from socratic_tutor.session_state import ConversationTurn
from socratic_tutor.text_cleanup import (
    NEXT_QUESTION_PROMPT,
    QUESTION_TRANSITION,
    clean_explanation,
    clean_hint,
    clean_intro,
    clean_question,
    extract_json_object,
    guard_feedback,
)


class ScriptedClient:
    """Stands in for GeminiClient; replies in order or raises queued errors."""

    def __init__(self, *replies):
        self.replies: List = list(replies)
        self.prompts: List[str] = []
        self.documents: List[bytes] = []

    async def _next(self) -> str:
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return await self._next()

    async def generate_with_document(self, prompt: str, document: bytes, *, mime_type: str = "application/pdf") -> str:
        self.prompts.append(prompt)
        self.documents.append(document)
        return await self._next()

    async def aclose(self) -> None:
        pass


# ---- text cleanup ----


def test_clean_question_strips_prefix_and_quotes():
    assert clean_question('Question 2: "What powers the Calvin cycle"') == "What powers the Calvin cycle?"
    assert clean_question("Q: Explain why leaves are green.") == "Explain why leaves are green."


def test_clean_intro_adds_transition_once():
    assert clean_intro("Intro: Plants eat light.") == f"Plants eat light.\n\n{QUESTION_TRANSITION}"
    assert clean_intro("Let's begin with a question.") == "Let's begin with a question."


def test_clean_explanation_ends_with_next_question_prompt():
    assert clean_explanation("Explanation: Right.") == f"Right.\n\n{NEXT_QUESTION_PROMPT}"
    assert clean_explanation(f"Right. {NEXT_QUESTION_PROMPT}").count(NEXT_QUESTION_PROMPT) == 1


def test_clean_hint_strips_label():
    assert clean_hint("\U0001F4A1 Hint 2/3: Consider the energy source.") == "Consider the energy source."


def test_guard_feedback_prefixes_explanations():
    assert guard_feedback("The answer is ATP.") == "Let's explore this further. The answer is ATP."
    assert guard_feedback("You're on the right track. What else?") == "You're on the right track. What else?"


def test_extract_json_object_tolerates_fences_and_chatter():
    assert extract_json_object('```json\n{"quality": "strong"}\n```') == {"quality": "strong"}
    assert extract_json_object('Sure! {"a": 1} Hope that helps.') == {"a": 1}
    with pytest.raises(ValueError):
        extract_json_object("no json here")


def test_question_prompt_limits_context_and_includes_history():
    text = "x" * (TURN_CONTEXT_CHARS + 500)
    history = [ConversationTurn("assistant", "question", "What is ATP?"), ConversationTurn("user", "answer", "Energy")]
    prompt = question_prompt(text, Difficulty.ADVANCED, history, "Calvin cycle")
    assert "x" * TURN_CONTEXT_CHARS in prompt
    assert "x" * (TURN_CONTEXT_CHARS + 1) not in prompt
    assert "AI (question): What is ATP?" in prompt
    assert "Student (answer): Energy" in prompt
    assert '"Calvin cycle"' in prompt
    assert "synthesis questions" in prompt


# ---- oracle ----


@pytest.mark.asyncio
async def test_extract_text_rejects_non_pdf():
    client = ScriptedClient()
    oracle = GeminiTutorOracle(client)
    with pytest.raises(ExtractionError):
        await oracle.extract_text(b"GIF89a", "application/pdf")
    assert client.prompts == []


@pytest.mark.asyncio
async def test_extract_text_sends_document():
    client = ScriptedClient("  Extracted lecture text  ")
    oracle = GeminiTutorOracle(client)
    assert await oracle.extract_text(PDF_BYTES) == "Extracted lecture text"
    assert client.documents == [PDF_BYTES]


@pytest.mark.asyncio
async def test_extract_text_empty_reply_is_an_error():
    oracle = GeminiTutorOracle(ScriptedClient("   "))
    with pytest.raises(ExtractionError):
        await oracle.extract_text(PDF_BYTES)


@pytest.mark.asyncio
async def test_analyze_content_filters_entries():
    reply = '```json\n{"topics": ["Light", "", 3, "Dark"], "concepts": ["ATP"]}\n```'
    oracle = GeminiTutorOracle(ScriptedClient(reply))
    analysis = await oracle.analyze_content(LECTURE_TEXT)
    assert analysis.topics == ["Light", "Dark"]
    assert analysis.concepts == ["ATP"]


@pytest.mark.asyncio
async def test_analyze_content_malformed_reply():
    oracle = GeminiTutorOracle(ScriptedClient('{"topics": "Light"}'))
    with pytest.raises(AnalysisError):
        await oracle.analyze_content(LECTURE_TEXT)


@pytest.mark.asyncio
async def test_evaluate_answer_parses_reply():
    reply = '{"quality": "partial", "feedback": "You\'re on the right track. What about light?"}'
    oracle = GeminiTutorOracle(ScriptedClient(reply))
    evaluation = await oracle.evaluate_answer("Why?", "Because of sunlight energy", LECTURE_TEXT, Difficulty.BASIC)
    assert evaluation.quality is Quality.PARTIAL
    assert evaluation.feedback.startswith("You're on the right track")


@pytest.mark.asyncio
async def test_evaluate_answer_rejects_unknown_quality():
    oracle = GeminiTutorOracle(ScriptedClient('{"quality": "excellent", "feedback": "ok"}'))
    with pytest.raises(EvaluationError):
        await oracle.evaluate_answer("Why?", "Because", LECTURE_TEXT, Difficulty.BASIC)


@pytest.mark.asyncio
async def test_transport_errors_are_retyped_with_rate_limit_flag():
    client = ScriptedClient(OracleError("Gemini request failed with HTTP 429", retry_later=True))
    oracle = GeminiTutorOracle(client)
    with pytest.raises(EvaluationError) as info:
        await oracle.evaluate_answer("Why?", "Because", LECTURE_TEXT, Difficulty.BASIC)
    assert info.value.retry_later is True
    assert "HTTP 429" in info.value.message


@pytest.mark.asyncio
async def test_generate_question_cleans_reply():
    client = ScriptedClient("Question: 'How does chlorophyll capture light'")
    oracle = GeminiTutorOracle(client)
    question = await oracle.generate_question(LECTURE_TEXT, Difficulty.BASIC, [], "Chlorophyll")
    assert question == "How does chlorophyll capture light?"
    assert "simple recall questions" in client.prompts[0]


@pytest.mark.asyncio
async def test_generate_question_failure_is_generation_error():
    oracle = GeminiTutorOracle(ScriptedClient(RuntimeError("connection reset")))
    with pytest.raises(GenerationError):
        await oracle.generate_question(LECTURE_TEXT, Difficulty.BASIC, [])


@pytest.mark.asyncio
async def test_invalid_inputs_raise_validation_error():
    oracle = GeminiTutorOracle(ScriptedClient())
    with pytest.raises(ValidationError):
        await oracle.generate_hint("Why?", "", 4, LECTURE_TEXT, Difficulty.BASIC)
    with pytest.raises(ValidationError):
        await oracle.generate_explanation("Why?", "Because", LECTURE_TEXT, 7)


@pytest.mark.asyncio
async def test_empty_content_is_rejected_before_calling_model():
    client = ScriptedClient()
    oracle = GeminiTutorOracle(client)
    with pytest.raises(GenerationError):
        await oracle.generate_intro("", Difficulty.BASIC)
    assert client.prompts == []
