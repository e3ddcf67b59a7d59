from __future__ import annotations

from typing import NamedTuple, Optional, Sequence, Tuple

from .difficulty import Difficulty
from .errors import ValidationError
from .session_state import ROLE_ASSISTANT, ConversationTurn

ANALYSIS_CONTEXT_CHARS = 100_000
INTRO_CONTEXT_CHARS = 6_000
TURN_CONTEXT_CHARS = 4_000

MAX_HINTS = 3


class QuestionStyle(NamedTuple):
    style: str
    examples: str
    instruction: str
    expectation: str


class ExplanationStyle(NamedTuple):
    style: str
    instruction: str
    intro_length: str
    explanation_length: str


class HintLevel(NamedTuple):
    specificity: str
    instruction: str
    helpfulness: str


# Indexed by Difficulty - 1; one entry per enum member.
QUESTION_STYLES: Tuple[QuestionStyle, ...] = (
    QuestionStyle(
        "simple recall questions",
        '"What is X?" or "Define Y."',
        "Ask a direct question that checks recall of facts, definitions and key terms.",
        "Basic recall of facts, definitions and key terms. Simple understanding is enough.",
    ),
    QuestionStyle(
        "understanding questions",
        '"Why does X happen?" or "What causes Y?"',
        "Ask a question about relationships, causes and basic reasoning between concepts.",
        "Understanding of relationships, causes and basic reasoning.",
    ),
    QuestionStyle(
        "application questions",
        '"How does X relate to Y?" or "When would you apply Z?"',
        "Ask a question that applies concepts to new situations and connects ideas.",
        "Application of concepts to situations and analysis of how ideas connect.",
    ),
    QuestionStyle(
        "synthesis questions",
        '"What if we combined X and Y?" or "How would you design a solution with A, B and C?"',
        "Ask a question that combines several concepts and weighs trade-offs critically.",
        "Synthesis of several concepts, critical thinking and evaluation.",
    ),
)

EXPLANATION_STYLES: Tuple[ExplanationStyle, ...] = (
    ExplanationStyle(
        "simple and straightforward",
        "Use simple language and basic terms. Keep it accessible.",
        "4-5 sentences",
        "3-4 sentences",
    ),
    ExplanationStyle(
        "clear with some detail",
        "Give clear explanations with moderate detail, including relationships and basic reasoning.",
        "5-6 sentences",
        "4-5 sentences",
    ),
    ExplanationStyle(
        "detailed with connections",
        "Show how the concepts connect, with applications.",
        "6-7 sentences",
        "4-5 sentences",
    ),
    ExplanationStyle(
        "comprehensive and nuanced",
        "Give a nuanced account with synthesis and critical analysis.",
        "7-8 sentences",
        "5 sentences",
    ),
)

# Indexed by hint number - 1.
HINT_LEVELS: Tuple[HintLevel, ...] = (
    HintLevel(
        "a gentle nudge in the general direction",
        "Point toward the broad area to consider without naming specifics.",
        "minimal, just enough to start them thinking",
    ),
    HintLevel(
        "a more specific hint that narrows down the concept",
        "Name the concept or relationship they should focus on.",
        "moderate, guides them to the right area without the answer",
    ),
    HintLevel(
        "a very specific hint that almost gives it away",
        "Point at the exact relationship or example, leaving only the final connection to them.",
        "high, close to the answer but still requires synthesis",
    ),
)


def question_style(difficulty: Difficulty) -> QuestionStyle:
    return QUESTION_STYLES[int(difficulty) - 1]


def explanation_style(difficulty: Difficulty) -> ExplanationStyle:
    return EXPLANATION_STYLES[int(difficulty) - 1]


def hint_level(hint_number: int) -> HintLevel:
    if isinstance(hint_number, bool) or not isinstance(hint_number, int) or not 1 <= hint_number <= MAX_HINTS:
        raise ValidationError(f"Hint number must be between 1 and {MAX_HINTS}")
    return HINT_LEVELS[hint_number - 1]


def format_history(history: Sequence[ConversationTurn]) -> str:
    lines = []
    for turn in history:
        speaker = "AI" if turn.role == ROLE_ASSISTANT else "Student"
        lines.append(f"{speaker} ({turn.type}): {turn.content}")
    return "\n\n".join(lines)


_NO_SOURCE_RULE = (
    'Do not mention "the lecture", "the PDF", "the material" or "the slides"; '
    "present the ideas as general knowledge and never ask the student to look anything up."
)


def analysis_prompt(text: str) -> str:
    return (
        "Analyze the following text from a lecture PDF and identify:\n"
        "1. The main topics (3-7 topics covered in the lecture)\n"
        "2. The key concepts (5-15 important concepts, terms or ideas)\n\n"
        "Return ONLY a JSON object with this exact structure:\n"
        '{"topics": ["topic1", "topic2"], "concepts": ["concept1", "concept2"]}\n\n'
        f"Text content:\n{text[:ANALYSIS_CONTEXT_CHARS]}"
    )


def extraction_prompt() -> str:
    return (
        "Extract all readable text from this PDF document in reading order.\n"
        "Keep headings and bullet text. Skip page numbers and repeated headers or footers.\n"
        "Output ONLY the extracted text."
    )


def intro_prompt(text: str, difficulty: Difficulty, focus_topic: Optional[str] = None) -> str:
    style = explanation_style(difficulty)
    lines = [
        "You are a Socratic tutor opening a new learning session.",
        "Give a short, engaging orientation to the subject before the questioning begins.",
        f"Style: {style.style}. {style.instruction}",
        f"Length: {style.intro_length}.",
        "Do not ask any question yet; end by saying that we will start with a question.",
        _NO_SOURCE_RULE,
    ]
    if focus_topic:
        lines.append(f'Center the orientation on the topic: "{focus_topic}".')
    lines.append(f"\nLecture text (first {INTRO_CONTEXT_CHARS} characters):\n{text[:INTRO_CONTEXT_CHARS]}")
    lines.append("\nOutput ONLY the introduction text.")
    return "\n".join(lines)


def question_prompt(
    text: str,
    difficulty: Difficulty,
    history: Sequence[ConversationTurn],
    focus_topic: Optional[str] = None,
) -> str:
    style = question_style(difficulty)
    lines = [
        "You are a Socratic tutor. Your only job is to ask one question.",
        "Never give explanations, answers or hints.",
        f"Difficulty level {int(difficulty)}: {style.instruction}",
        f"Question style: {style.style} (for example {style.examples}).",
        "Build on the earlier conversation and do not repeat a question already asked.",
        _NO_SOURCE_RULE,
    ]
    if focus_topic:
        lines.append(f'Focus on the topic: "{focus_topic}".')
    history_text = format_history(history)
    if history_text:
        lines.append(f"\nPrevious conversation:\n{history_text}")
    lines.append(f"\nLecture text (first {TURN_CONTEXT_CHARS} characters):\n{text[:TURN_CONTEXT_CHARS]}")
    lines.append("\nOutput ONLY the question text, with no prefix.")
    return "\n".join(lines)


def evaluation_prompt(question: str, answer: str, text: str, difficulty: Difficulty) -> str:
    style = question_style(difficulty)
    return "\n".join([
        "You are a Socratic tutor evaluating a student's answer. Evaluate and give feedback; do not explain the answer.",
        "Judge logical reasoning, grasp of the concepts, correctness and depth "
        f"appropriate for difficulty level {int(difficulty)}.",
        f"Expectations at this level: {style.expectation}",
        "Quality labels:",
        '- "strong": sound reasoning, correct concepts, depth fits the level.',
        '- "partial": some understanding, but incomplete, unclear or partly inaccurate.',
        '- "needs_work": off-topic, incorrect or lacking reasoning.',
        "Feedback:",
        '- strong: open with positive reinforcement such as "Great thinking!" and signal that an explanation follows.',
        "- partial: open with \"You're on the right track.\" and ask a follow-up question about the weak part.",
        "- needs_work: open with \"Let's think about this differently.\" and ask a question that redirects their thinking.",
        "Feedback is a question or gentle nudge, never an explanation. " + _NO_SOURCE_RULE,
        f"\nLecture text (first {TURN_CONTEXT_CHARS} characters):\n{text[:TURN_CONTEXT_CHARS]}",
        f"\nQuestion asked: {question}",
        f"Student's answer: {answer}",
        '\nReturn ONLY a JSON object: {"quality": "strong" | "partial" | "needs_work", "feedback": "..."}',
    ])


def explanation_prompt(question: str, answer: str, text: str, difficulty: Difficulty) -> str:
    style = explanation_style(difficulty)
    return "\n".join([
        "The student has shown good understanding. Explain the concept to confirm their learning.",
        "Acknowledge what they got right, then expand on the concept with more context.",
        f"Style: {style.style}. {style.instruction}",
        f"Length: {style.explanation_length}.",
        'End with: "Ready for the next question?"',
        _NO_SOURCE_RULE,
        f"\nLecture text (first {TURN_CONTEXT_CHARS} characters):\n{text[:TURN_CONTEXT_CHARS]}",
        f"\nQuestion asked: {question}",
        f"Student's answer: {answer}",
        "\nOutput ONLY the explanation text.",
    ])


def hint_prompt(question: str, answer: str, hint_number: int, text: str, difficulty: Difficulty) -> str:
    level = hint_level(hint_number)
    return "\n".join([
        "You are a Socratic tutor giving a progressive hint. Never give the answer or an explanation.",
        f"Hint {hint_number} of {MAX_HINTS} should be {level.specificity}. {level.instruction}",
        f"Helpfulness: {level.helpfulness}.",
        "Phrase it as a question, a suggestion or a guiding thought, and build on what the student has tried.",
        f"Match difficulty level {int(difficulty)}.",
        _NO_SOURCE_RULE,
        f"\nLecture text (first {TURN_CONTEXT_CHARS} characters):\n{text[:TURN_CONTEXT_CHARS]}",
        f"\nQuestion asked: {question}",
        f"Student's current answer: {answer or '(no answer yet)'}",
        "\nOutput ONLY the hint text, with no prefix.",
    ])
