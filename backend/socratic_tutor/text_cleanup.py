from __future__ import annotations

import json
import re
from typing import Any, Dict

QUESTION_TRANSITION = "Let's start with a question to explore this topic together."
NEXT_QUESTION_PROMPT = "Ready for the next question?"
FEEDBACK_LEAD_IN = "Let's explore this further."

_QUESTION_PREFIX = re.compile(r"^\s*(?:question\s*\d*\s*[:.\-]|q\d*\s*[:.\-])\s*", re.IGNORECASE)
_INTRO_PREFIX = re.compile(r"^\s*(?:introduction|intro)\s*[:.\-]\s*", re.IGNORECASE)
_EXPLANATION_PREFIX = re.compile(r"^\s*(?:explanation|answer)\s*[:.\-]\s*", re.IGNORECASE)
_HINT_PREFIX = re.compile(r"^\s*(?:\U0001F4A1\s*)?hint\s*\d*(?:\s*/\s*\d+)?\s*[:.\-]\s*", re.IGNORECASE)
_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)

# Phrases that mean the model started teaching instead of giving feedback.
_EXPLANATION_MARKERS = (
    "the answer is",
    "the correct answer",
    "in summary",
    "to summarize",
    "this means that",
    "the key concept is",
)


def strip_quotes(text: str) -> str:
    text = text.strip()
    if text[:1] in ("\"", "'"):
        text = text[1:]
    if text[-1:] in ("\"", "'"):
        text = text[:-1]
    return text.strip()


def clean_question(text: str) -> str:
    question = strip_quotes(_QUESTION_PREFIX.sub("", text.strip()))
    if question and not question.endswith(("?", ".")):
        question += "?"
    return question


def clean_intro(text: str) -> str:
    intro = strip_quotes(_INTRO_PREFIX.sub("", text.strip()))
    if "question" not in intro.lower():
        intro = f"{intro}\n\n{QUESTION_TRANSITION}" if intro else QUESTION_TRANSITION
    return intro


def clean_explanation(text: str) -> str:
    explanation = _EXPLANATION_PREFIX.sub("", text.strip()).strip()
    if NEXT_QUESTION_PROMPT.lower() not in explanation.lower():
        explanation = f"{explanation}\n\n{NEXT_QUESTION_PROMPT}" if explanation else NEXT_QUESTION_PROMPT
    return explanation


def clean_hint(text: str) -> str:
    return strip_quotes(_HINT_PREFIX.sub("", text.strip()))


def guard_feedback(text: str) -> str:
    """Prefix feedback that reads like a full explanation with a nudge to keep thinking."""
    feedback = text.strip()
    lowered = feedback.lower()
    if any(marker in lowered for marker in _EXPLANATION_MARKERS) and not lowered.startswith(FEEDBACK_LEAD_IN.lower()):
        feedback = f"{FEEDBACK_LEAD_IN} {feedback}"
    return feedback


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the first JSON object in a model reply, tolerating code fences and chatter."""
    candidates = [text]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    first = text.find("{")
    last = text.rfind("}")
    if first != -1 and last > first:
        candidates.append(text[first : last + 1])
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise ValueError("Model did not return a valid JSON object")
