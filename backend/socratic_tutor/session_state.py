"""
Mutable state of one tutoring session.

The transcript is the grounding context handed to the model; display
messages are what the student sees. Both are append-only until a reset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .difficulty import WINDOW_SIZE, Difficulty, Quality

ROLE_ASSISTANT = "assistant"
ROLE_USER = "user"

TURN_QUESTION = "question"
TURN_ANSWER = "answer"
TURN_EXPLANATION = "explanation"

# Display message kinds; everything except hints is persisted.
MSG_INTRO = "intro"
MSG_QUESTION = "ai-question"
MSG_ANSWER = "user-answer"
MSG_EXPLANATION = "ai-explanation"
MSG_HINT = "hint"
PERSISTED_MESSAGE_TYPES = (MSG_INTRO, MSG_QUESTION, MSG_ANSWER, MSG_EXPLANATION)

QUESTIONS_PER_TOPIC = 3


@dataclass
class ConversationTurn:
    role: str
    type: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "type": self.type, "content": self.content}


@dataclass
class DisplayMessage:
    type: str
    content: str
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def persisted(self) -> bool:
        return self.type in PERSISTED_MESSAGE_TYPES

    def to_dict(self) -> dict:
        return {"type": self.type, "content": self.content, "createdAt": self.created_at.isoformat()}


@dataclass
class SessionState:
    difficulty: Difficulty = Difficulty.BASIC
    question_number: int = 1
    attempt_count: int = 0
    hint_count: int = 0
    quality_window: List[Quality] = field(default_factory=list)
    explored_topics: List[str] = field(default_factory=list)
    transcript: List[ConversationTurn] = field(default_factory=list)
    current_question_text: Optional[str] = None
    last_answer: Optional[str] = None
    messages: List[DisplayMessage] = field(default_factory=list)
    events: List[dict] = field(default_factory=list)
    questions_asked: int = 0
    correct_answers: int = 0
    hints_used: int = 0
    started_at: Optional[datetime] = None

    def push_quality(self, quality: Quality) -> None:
        self.quality_window.append(quality)
        if len(self.quality_window) > WINDOW_SIZE:
            del self.quality_window[:-WINDOW_SIZE]

    def focus_topic(self, topics: Sequence[str]) -> Optional[str]:
        """Three questions per topic, staying on the last topic once the list runs out."""
        if not topics:
            return None
        index = min((self.question_number - 1) // QUESTIONS_PER_TOPIC, len(topics) - 1)
        return topics[index]

    def mark_explored(self, topic: str) -> None:
        if topic not in self.explored_topics:
            self.explored_topics.append(topic)

    def add_turn(self, role: str, turn_type: str, content: str) -> None:
        self.transcript.append(ConversationTurn(role=role, type=turn_type, content=content))

    def add_message(self, message_type: str, content: str) -> DisplayMessage:
        message = DisplayMessage(type=message_type, content=content)
        self.messages.append(message)
        return message

    def complete_question(self) -> None:
        self.question_number += 1
        self.attempt_count = 0
        self.hint_count = 0
        self.current_question_text = None
        self.last_answer = None

    def to_dict(self) -> dict:
        return {
            "difficulty": int(self.difficulty),
            "difficultyLabel": self.difficulty.label,
            "questionNumber": self.question_number,
            "attemptCount": self.attempt_count,
            "hintCount": self.hint_count,
            "qualityWindow": [q.value for q in self.quality_window],
            "exploredTopics": list(self.explored_topics),
            "currentQuestion": self.current_question_text,
            "questionsAsked": self.questions_asked,
            "correctAnswers": self.correct_answers,
            "hintsUsed": self.hints_used,
            "transcript": [turn.to_dict() for turn in self.transcript],
            "messages": [message.to_dict() for message in self.messages],
            "events": list(self.events),
        }

    @classmethod
    def restore(
        cls,
        *,
        difficulty: int,
        question_number: int,
        messages: Iterable[tuple],
        started_at: Optional[datetime] = None,
    ) -> "SessionState":
        """Rebuild state from persisted (type, content) message pairs.

        Attempt, hint and quality-window counters are not persisted and start
        from zero. The last question is still open when the number of asked
        questions equals the persisted question number.
        """
        state = cls(difficulty=Difficulty.parse(difficulty), question_number=max(1, int(question_number or 1)))
        state.started_at = started_at
        last_question: Optional[str] = None
        answer_since_question: Optional[str] = None
        asked = 0
        for message_type, content in messages:
            state.add_message(message_type, content)
            if message_type == MSG_QUESTION:
                state.add_turn(ROLE_ASSISTANT, TURN_QUESTION, content)
                last_question = content
                answer_since_question = None
                asked += 1
            elif message_type == MSG_ANSWER:
                state.add_turn(ROLE_USER, TURN_ANSWER, content)
                answer_since_question = content
            elif message_type in (MSG_INTRO, MSG_EXPLANATION):
                state.add_turn(ROLE_ASSISTANT, TURN_EXPLANATION, content)
        if last_question is not None and asked == state.question_number:
            state.current_question_text = last_question
            state.last_answer = answer_since_question
        return state
