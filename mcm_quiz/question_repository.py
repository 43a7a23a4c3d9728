"""
Read-only access to a fixed sequence of quiz questions.
"""
import random
from typing import Iterator, List, Optional, Sequence

from .models import Category, Difficulty, Question


class QuestionRepository:
    """
    Holds the canonical question sequence and answers queries over it.

    Every query returns a new list; the backing sequence is never mutated.
    """

    def __init__(self, questions: Sequence[Question], rng: Optional[random.Random] = None):
        """
        Args:
            questions: Questions in their canonical order
            rng: Random source for random_question and shuffled
        """
        self._questions = tuple(questions)
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self._questions)

    def __iter__(self) -> Iterator[Question]:
        return iter(self._questions)

    @property
    def questions(self) -> List[Question]:
        return list(self._questions)

    def get(self, question_id: str) -> Optional[Question]:
        for question in self._questions:
            if question.id == question_id:
                return question
        return None

    def categories(self) -> List[Category]:
        """Categories that have at least one question, in first-seen order."""
        seen: List[Category] = []
        for question in self._questions:
            if question.category not in seen:
                seen.append(question.category)
        return seen

    def by_category(self, category: Category) -> List[Question]:
        return [q for q in self._questions if q.category == category]

    def by_difficulty(self, difficulty: Difficulty) -> List[Question]:
        return [q for q in self._questions if q.difficulty == difficulty]

    def random_question(self) -> Optional[Question]:
        """Pick one question uniformly at random, None if the repository is empty."""
        if not self._questions:
            return None
        return self._rng.choice(self._questions)

    def shuffled(self, count: Optional[int] = None) -> List[Question]:
        """
        Get a uniformly shuffled selection of questions.

        Args:
            count: How many questions to return, capped at the total.
                Defaults to all questions.

        Returns:
            New list of distinct questions in random order
        """
        if count is None or count > len(self._questions):
            count = len(self._questions)
        if count < 1:
            return []

        shuffled = list(self._questions)
        self._rng.shuffle(shuffled)
        return shuffled[:count]

    def search(self, keyword: str) -> List[Question]:
        """
        Case-insensitive substring search over keywords and question text.
        """
        needle = keyword.lower()
        return [
            q for q in self._questions
            if any(needle in k.lower() for k in q.keywords) or needle in q.text.lower()
        ]
