"""
Thinking score and progress statistics.

The thinking score (0-100) blends correctness (up to 60 points), a time bonus
for a thoughtful pace (up to 20) and a penalty for hints (up to 20).
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Iterable, Optional

CORRECTNESS_WEIGHT = 60
MAX_HINT_PENALTY = 20
HINT_PENALTY = 2
NO_TIME_BONUS = 10


def round1(value: float) -> float:
    """Round half up to one decimal."""
    return math.floor(value * 10 + 0.5) / 10


def _time_bonus(time_spent_minutes: Optional[float], total_questions: int) -> float:
    if time_spent_minutes is None or time_spent_minutes <= 0 or total_questions <= 0:
        return NO_TIME_BONUS
    average = time_spent_minutes / total_questions
    if 2 <= average <= 5:
        return 20
    if average < 2:
        return 10
    if average <= 10:
        return 15
    return 5


def compute_thinking_score(
    correct_answers: int,
    hints_used: int,
    time_spent_minutes: Optional[float] = None,
    total_questions: int = 1,
) -> float:
    correctness = correct_answers * CORRECTNESS_WEIGHT / total_questions if total_questions > 0 else 0
    penalty = min(hints_used * HINT_PENALTY, MAX_HINT_PENALTY)
    score = correctness + _time_bonus(time_spent_minutes, total_questions) - penalty
    return round1(max(0.0, min(100.0, score)))


def compute_time_spent(start: datetime, end: Optional[datetime] = None) -> float:
    """Minutes between start and end (now when omitted)."""
    end = end or datetime.utcnow()
    return (end - start).total_seconds() / 60


@dataclass
class SessionSummary:
    session_id: str
    questions_asked: int
    correct_answers: int
    hints_used: int
    time_spent_minutes: float
    thinking_score: Optional[float]

    @classmethod
    def build(
        cls,
        session_id: str,
        questions_asked: int,
        correct_answers: int,
        hints_used: int,
        started_at: datetime,
        ended_at: Optional[datetime] = None,
    ) -> "SessionSummary":
        minutes = compute_time_spent(started_at, ended_at)
        score = None
        if questions_asked > 0:
            score = compute_thinking_score(correct_answers, hints_used, minutes, questions_asked)
        return cls(session_id, questions_asked, correct_answers, hints_used, minutes, score)

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "timeSpentMinutes": round1(self.time_spent_minutes),
            "progress": {
                "questionsAsked": self.questions_asked,
                "correctAnswers": self.correct_answers,
                "hintsUsed": self.hints_used,
                "thinkingScore": self.thinking_score,
            },
        }


@dataclass
class ProgressStatistics:
    total_sessions: int = 0
    total_questions_asked: int = 0
    total_correct_answers: int = 0
    total_hints_used: int = 0
    average_thinking_score: float = 0.0
    average_time_spent_minutes: float = 0.0
    overall_accuracy: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "totalSessions": data["total_sessions"],
            "totalQuestionsAsked": data["total_questions_asked"],
            "totalCorrectAnswers": data["total_correct_answers"],
            "totalHintsUsed": data["total_hints_used"],
            "averageThinkingScore": data["average_thinking_score"],
            "averageTimeSpent": data["average_time_spent_minutes"],
            "overallAccuracy": data["overall_accuracy"],
        }


def summarize_sessions(summaries: Iterable[SessionSummary]) -> ProgressStatistics:
    summaries = list(summaries)
    stats = ProgressStatistics(total_sessions=len(summaries))
    if not summaries:
        return stats

    stats.total_questions_asked = sum(s.questions_asked for s in summaries)
    stats.total_correct_answers = sum(s.correct_answers for s in summaries)
    stats.total_hints_used = sum(s.hints_used for s in summaries)

    scores = [s.thinking_score for s in summaries if s.questions_asked > 0 and s.thinking_score is not None]
    if scores:
        stats.average_thinking_score = round1(sum(scores) / len(scores))
    stats.average_time_spent_minutes = round1(sum(s.time_spent_minutes for s in summaries) / len(summaries))
    if stats.total_questions_asked > 0:
        stats.overall_accuracy = round1(stats.total_correct_answers / stats.total_questions_asked * 100)
    return stats
