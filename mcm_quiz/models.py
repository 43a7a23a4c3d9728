"""
Core data models for the MCM/MCD quiz.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


class Category(Enum):
    """Question categories used by the question bank."""
    LCM = "mcm"
    GCD = "mcd"
    MIXED = "mixed"
    PRIMES = "primes"
    APPLICATION = "application"


class Difficulty(Enum):
    """Question difficulty levels."""
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class Answer:
    """One of the answer options of a question."""
    text: str
    correct: bool
    explanation: str


@dataclass(frozen=True)
class Calculation:
    """
    Describes how the correct answer of a question was obtained.

    Only kept for traceability; the quiz session never reads it.
    """
    operation: str
    result: int
    numbers: Tuple[int, ...] = ()
    known_values: Dict[str, int] = field(default_factory=dict, hash=False)
    formula: Optional[str] = None
    second_step: Optional["Calculation"] = None
    special: Optional[str] = None


@dataclass(frozen=True)
class Question:
    """Represents a single multiple-choice quiz question."""
    id: str
    category: Category
    difficulty: Difficulty
    text: str
    answers: Tuple[Answer, ...]
    keywords: FrozenSet[str] = frozenset()
    calculation: Optional[Calculation] = None

    @property
    def correct_index(self) -> Optional[int]:
        """Index of the correct answer, or None if the data is malformed."""
        for index, answer in enumerate(self.answers):
            if answer.correct:
                return index
        return None


@dataclass
class QuizSettings:
    """Configuration settings for a quiz session."""
    question_count: int = 10
    random_order: bool = True
    time_limit: int = 90

    def merged(
        self,
        question_count: Optional[int] = None,
        random_order: Optional[bool] = None,
        time_limit: Optional[int] = None
    ) -> "QuizSettings":
        """
        Return a copy with every non-None argument laid over these settings.
        """
        overrides = {}
        if question_count is not None:
            overrides['question_count'] = question_count
        if random_order is not None:
            overrides['random_order'] = random_order
        if time_limit is not None:
            overrides['time_limit'] = time_limit
        return replace(self, **overrides)


# Selected index recorded when a question ends without an answer (timeout or skip)
NO_SELECTION = -1


@dataclass(frozen=True)
class UserAnswer:
    """The recorded outcome of one question in a session."""
    question_id: str
    selected_index: int
    is_correct: bool
    time_used: int

    @property
    def unanswered(self) -> bool:
        return self.selected_index == NO_SELECTION


@dataclass
class Achievements:
    """Per-session achievement bookkeeping."""
    correct_streak: int = 0
    lcm_correct: int = 0
    gcd_correct: int = 0
    perfect_score: bool = False
    # Not computed by any scoring rule yet
    speed_bonus: int = 0

    def copy(self) -> "Achievements":
        return replace(self)


@dataclass(frozen=True)
class QuizStatistics:
    """Summary of a session, also delivered as the quiz-complete payload."""
    total_questions: int
    correct_answers: int
    incorrect_answers: int
    accuracy_percent: int
    average_time_per_question: int
    final_score: int
    achievements: Achievements


class QuizEvent(Enum):
    """Notifications a quiz session emits to its listeners."""
    QUESTION_CHANGED = "question_changed"
    SCORE_UPDATED = "score_updated"
    TIME_UPDATED = "time_updated"
    ANSWER_SELECTED = "answer_selected"
    QUIZ_COMPLETE = "quiz_complete"


@dataclass(frozen=True)
class QuestionChanged:
    question: Question
    index: int
    total: int


@dataclass(frozen=True)
class ScoreUpdated:
    new_total_score: int
    points_awarded: int


@dataclass(frozen=True)
class TimeUpdated:
    seconds_remaining: int
    seconds_limit: int


@dataclass(frozen=True)
class AnswerSelected:
    question: Question
    selected_answer: Optional[Answer]
    is_correct: bool
    explanation: str
    selected_index: int = NO_SELECTION
