"""
Quiz session state machine.

Handles question sequencing, per-question countdown, scoring, streaks and
achievements for a single player, and notifies registered listeners of
every change.
"""
import logging
import math
import random
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .models import (
    Achievements,
    AnswerSelected,
    Category,
    NO_SELECTION,
    Question,
    QuestionChanged,
    QuizEvent,
    QuizSettings,
    QuizStatistics,
    ScoreUpdated,
    TimeUpdated,
    UserAnswer,
)
from .quiz_engine import QuizTimer, TimerLifecycleLogger

BASE_POINTS = 100
TIME_BONUS_PER_SECOND = 2
STREAK_BONUS = 50
STREAK_BONUS_THRESHOLD = 3

TIMEOUT_EXPLANATION = "Tiempo agotado - No se seleccionó respuesta"

Listener = Callable[[Any], None]


class SessionState(Enum):
    """Lifecycle states of a quiz session."""
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    FINISHED = "finished"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class QuizSession:
    """
    A single player's run through a set of questions.

    ``configure`` sets up the next run, ``initialize`` starts it, and the
    player drives it with ``select_answer`` and ``next_question`` until the
    last question is passed or ``exit_quiz`` is called. Mutating calls made
    while the session is not active are ignored.

    All calls, including the countdown ``tick``, must happen on the same
    event loop thread.
    """

    def __init__(
        self,
        questions: Optional[Iterable[Question]] = None,
        settings: Optional[QuizSettings] = None,
        timer_factory: Optional[Callable[[Callable[[], Any]], Any]] = None,
        rng: Optional[random.Random] = None,
        name: str = "quiz"
    ):
        """
        Initialize the session.

        Args:
            questions: Default question pool (a QuestionRepository or any
                iterable of questions) used when initialize gets no pool
            settings: Starting settings, defaults to QuizSettings()
            timer_factory: Builds the countdown from the tick callback,
                defaults to a one-second QuizTimer
            rng: Random source for question shuffling
            name: Label used in logs
        """
        self.logger = logging.getLogger(__name__)
        self.name = name
        self._default_pool = questions
        self._settings = settings or QuizSettings()
        self._rng = rng or random.Random()
        if timer_factory is None:
            self._timer = QuizTimer(self.tick, name=name)
        else:
            self._timer = timer_factory(self.tick)

        self._listeners: Dict[QuizEvent, List[Listener]] = {event: [] for event in QuizEvent}

        self._state = SessionState.UNINITIALIZED
        self._questions: List[Question] = []
        self._current_index = 0
        self._score = 0
        self._user_answers: List[UserAnswer] = []
        self._time_limit = self._settings.time_limit
        self._time_remaining = self._time_limit
        self._achievements = Achievements()

    # Listener registration

    def add_listener(self, event: QuizEvent, handler: Listener) -> None:
        """Register a handler called synchronously each time ``event`` fires."""
        self._listeners[event].append(handler)

    def remove_listener(self, event: QuizEvent, handler: Listener) -> None:
        if handler in self._listeners[event]:
            self._listeners[event].remove(handler)

    def _emit(self, event: QuizEvent, payload: Any) -> None:
        for handler in list(self._listeners[event]):
            try:
                handler(payload)
            except Exception as e:
                self.logger.error(
                    f"Listener for {event.value} failed in session {self.name}: {e}",
                    exc_info=True
                )

    # Lifecycle

    def configure(
        self,
        settings: Optional[QuizSettings] = None,
        question_count: Optional[int] = None,
        random_order: Optional[bool] = None,
        time_limit: Optional[int] = None
    ) -> QuizSettings:
        """
        Merge settings for the next ``initialize``.

        ``settings`` replaces the current settings as a whole; the keyword
        arguments are then laid over it field by field, skipping None.

        Returns:
            The settings now in effect
        """
        base = settings if settings is not None else self._settings
        self._settings = base.merged(
            question_count=question_count,
            random_order=random_order,
            time_limit=time_limit
        )
        if self._state == SessionState.ACTIVE:
            self.logger.info(f"Session {self.name} reconfigured while active; applies to the next run")
        return self._settings

    def initialize(self, questions: Optional[Iterable[Question]] = None) -> None:
        """
        Start a run over ``questions`` (or the default pool).

        Random order shuffles the pool and keeps the first question_count;
        sequential order keeps the pool's first question_count in place.

        Raises:
            ValueError: If the pool is missing or empty, or question_count < 1
        """
        pool_source = questions if questions is not None else self._default_pool
        if pool_source is None:
            raise ValueError("No question pool given")

        pool = list(pool_source)
        if not pool:
            raise ValueError("Cannot select questions from empty list")

        count = self._settings.question_count
        if count < 1:
            raise ValueError(f"Question count must be at least 1, got {count}")
        if self._settings.random_order:
            self._rng.shuffle(pool)

        previous = self._snapshot()
        self._questions = pool[:count]

        self._current_index = 0
        self._score = 0
        self._user_answers = []
        self._achievements = Achievements()
        self._time_limit = self._settings.time_limit
        self._state = SessionState.ACTIVE

        self.logger.info(
            f"Session {self.name} started with {len(self._questions)} questions",
            extra={
                'event_type': 'session_started',
                'session': self.name,
                'question_count': len(self._questions),
                'random_order': self._settings.random_order,
                'time_limit': self._time_limit,
                'timestamp': time.time()
            }
        )

        try:
            self._start_timer()
        except Exception as e:
            self._restore(previous)
            self.logger.error(
                f"Session {self.name} could not start its timer: {e}",
                extra={
                    'event_type': 'session_start_failed',
                    'session': self.name,
                    'error_type': type(e).__name__,
                    'timestamp': time.time()
                }
            )
            raise
        self._notify_question_change()

    def select_answer(self, answer_index: int) -> bool:
        """
        Record the player's choice for the current question.

        Out-of-range indexes, a question that was already answered and an
        inactive session are all ignored.

        Returns:
            True if the answer was recorded
        """
        if self._state != SessionState.ACTIVE:
            self.logger.debug(f"Ignoring answer in session {self.name}: not active")
            return False

        question = self.get_current_question()
        if question is None or self._is_current_answered():
            self.logger.debug(f"Ignoring answer in session {self.name}: question already answered")
            return False

        if not 0 <= answer_index < len(question.answers):
            self.logger.debug(f"Ignoring answer index {answer_index} for question {question.id}")
            return False

        selected_answer = question.answers[answer_index]
        is_correct = selected_answer.correct

        self._user_answers.append(UserAnswer(
            question_id=question.id,
            selected_index=answer_index,
            is_correct=is_correct,
            time_used=self._time_limit - self._time_remaining
        ))

        if is_correct:
            self._handle_correct_answer(question)
        else:
            self._handle_incorrect_answer()

        self._emit(QuizEvent.ANSWER_SELECTED, AnswerSelected(
            question=question,
            selected_answer=selected_answer,
            is_correct=is_correct,
            explanation=selected_answer.explanation,
            selected_index=answer_index
        ))

        # Hold the clock while the caller shows feedback
        self._pause_timer()
        return True

    def next_question(self) -> bool:
        """
        Move to the next question, or finish after the last one.

        A question left without an answer is recorded as unanswered and
        incorrect before moving on.

        Returns:
            True if the session advanced or finished
        """
        if self._state != SessionState.ACTIVE:
            return False

        if not self._is_current_answered():
            self._record_unanswered(self._time_limit - self._time_remaining)

        self._current_index += 1

        if self._current_index >= len(self._questions):
            self._end_quiz()
        else:
            self._start_timer()
            self._notify_question_change()
        return True

    def exit_quiz(self) -> bool:
        """Finish the session now, whatever questions are left."""
        if self._state != SessionState.ACTIVE:
            return False
        self.logger.info(f"Session {self.name} exited at question {self._current_index + 1}/{len(self._questions)}")
        self._end_quiz()
        return True

    def toggle_timer(self) -> bool:
        """
        Pause a running countdown or resume a stopped one.

        Resuming keeps the remaining time. An answered question's clock
        stays stopped.

        Returns:
            True if the countdown is running after the call
        """
        if self._state != SessionState.ACTIVE:
            return False

        if self._timer.is_running:
            self._pause_timer()
        elif not self._is_current_answered():
            self._timer.start()
        return self._timer.is_running

    def tick(self) -> None:
        """Advance the countdown by one second; expires the question at zero."""
        if self._state != SessionState.ACTIVE or self._is_current_answered():
            return

        self._time_remaining = max(self._time_remaining - 1, 0)
        TimerLifecycleLogger.log_timer_update(self.name, self._time_remaining, self._time_limit)
        self._emit(QuizEvent.TIME_UPDATED, TimeUpdated(
            seconds_remaining=self._time_remaining,
            seconds_limit=self._time_limit
        ))

        if self._time_remaining <= 0:
            self._handle_timeout()

    # Read-only projections

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == SessionState.ACTIVE

    @property
    def settings(self) -> QuizSettings:
        return self._settings

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def score(self) -> int:
        return self._score

    @property
    def time_remaining(self) -> int:
        return self._time_remaining

    @property
    def time_limit(self) -> int:
        return self._time_limit

    @property
    def questions(self) -> List[Question]:
        return list(self._questions)

    @property
    def user_answers(self) -> List[UserAnswer]:
        return list(self._user_answers)

    @property
    def achievements(self) -> Achievements:
        return self._achievements.copy()

    @property
    def timer_running(self) -> bool:
        return self._timer.is_running

    def get_current_question(self) -> Optional[Question]:
        if 0 <= self._current_index < len(self._questions):
            return self._questions[self._current_index]
        return None

    def get_progress(self) -> float:
        """Percentage of questions already passed, 0 to 100."""
        if not self._questions:
            return 0.0
        return (self._current_index / len(self._questions)) * 100

    def get_state(self) -> Dict[str, Any]:
        """Snapshot of the session state."""
        return {
            'state': self._state.value,
            'current_index': self._current_index,
            'score': self._score,
            'questions': list(self._questions),
            'user_answers': list(self._user_answers),
            'time_limit': self._time_limit,
            'time_remaining': self._time_remaining,
            'is_active': self.is_active,
            'timer_running': self._timer.is_running,
            'settings': {
                'question_count': self._settings.question_count,
                'random_order': self._settings.random_order,
                'time_limit': self._settings.time_limit
            },
            'progress': self.get_progress(),
            'achievements': self._achievements.copy()
        }

    def get_statistics(self) -> QuizStatistics:
        """
        Aggregate the recorded answers.

        Accuracy and average time are rounded half up and are 0 when
        nothing has been answered yet.
        """
        answered = len(self._user_answers)
        correct = sum(1 for a in self._user_answers if a.is_correct)

        if answered:
            accuracy = _round_half_up(correct / answered * 100)
            average_time = _round_half_up(sum(a.time_used for a in self._user_answers) / answered)
        else:
            accuracy = 0
            average_time = 0

        return QuizStatistics(
            total_questions=len(self._questions),
            correct_answers=correct,
            incorrect_answers=answered - correct,
            accuracy_percent=accuracy,
            average_time_per_question=average_time,
            final_score=self._score,
            achievements=self._achievements.copy()
        )

    # Internals

    def _is_current_answered(self) -> bool:
        return len(self._user_answers) > self._current_index

    def _snapshot(self) -> Dict[str, Any]:
        return {
            '_state': self._state,
            '_questions': self._questions,
            '_current_index': self._current_index,
            '_score': self._score,
            '_user_answers': self._user_answers,
            '_achievements': self._achievements,
            '_time_limit': self._time_limit,
            '_time_remaining': self._time_remaining,
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        for attribute, value in snapshot.items():
            setattr(self, attribute, value)

    def _start_timer(self) -> None:
        self._time_remaining = self._time_limit
        self._timer.start()

    def _pause_timer(self) -> None:
        self._timer.cancel()

    def _handle_correct_answer(self, question: Question) -> None:
        points = BASE_POINTS
        points += math.floor(self._time_remaining * TIME_BONUS_PER_SECOND)

        self._achievements.correct_streak += 1
        if self._achievements.correct_streak >= STREAK_BONUS_THRESHOLD:
            points += STREAK_BONUS

        if question.category == Category.LCM:
            self._achievements.lcm_correct += 1
        elif question.category == Category.GCD:
            self._achievements.gcd_correct += 1

        self._score += points
        self.logger.debug(
            f"Session {self.name}: +{points} points for {question.id} "
            f"(streak {self._achievements.correct_streak}, total {self._score})"
        )
        self._emit(QuizEvent.SCORE_UPDATED, ScoreUpdated(
            new_total_score=self._score,
            points_awarded=points
        ))

    def _handle_incorrect_answer(self) -> None:
        self._achievements.correct_streak = 0

    def _record_unanswered(self, time_used: int) -> Question:
        question = self._questions[self._current_index]
        self._user_answers.append(UserAnswer(
            question_id=question.id,
            selected_index=NO_SELECTION,
            is_correct=False,
            time_used=time_used
        ))
        self._handle_incorrect_answer()
        return question

    def _handle_timeout(self) -> None:
        self._pause_timer()
        question = self._record_unanswered(self._time_limit)
        self.logger.info(f"Session {self.name}: time expired on question {question.id}")

        self._emit(QuizEvent.ANSWER_SELECTED, AnswerSelected(
            question=question,
            selected_answer=None,
            is_correct=False,
            explanation=TIMEOUT_EXPLANATION
        ))

    def _notify_question_change(self) -> None:
        self._emit(QuizEvent.QUESTION_CHANGED, QuestionChanged(
            question=self.get_current_question(),
            index=self._current_index,
            total=len(self._questions)
        ))

    def _end_quiz(self) -> None:
        self._state = SessionState.FINISHED
        self._pause_timer()

        correct = sum(1 for a in self._user_answers if a.is_correct)
        if self._questions and correct == len(self._questions):
            self._achievements.perfect_score = True

        statistics = self.get_statistics()
        self.logger.info(
            f"Session {self.name} finished: {statistics.correct_answers}/{statistics.total_questions} correct, "
            f"score {statistics.final_score}",
            extra={
                'event_type': 'session_finished',
                'session': self.name,
                'correct_answers': statistics.correct_answers,
                'total_questions': statistics.total_questions,
                'final_score': statistics.final_score,
                'timestamp': time.time()
            }
        )
        self._emit(QuizEvent.QUIZ_COMPLETE, statistics)
