"""
Quiz session controller.
Keeps at most one quiz session per chat channel and wires it to a presenter.
"""
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .config_manager import ConfigManager
from .data_manager import DataManager
from .models import Category, QuizEvent, QuizSettings, QuizStatistics
from .quiz_session import QuizSession, SessionState


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionConflictError(QuizControllerError):
    """Raised when a channel already has an active session."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when operating on a channel without an active session."""
    pass


class QuizController:
    """
    Orchestrates quiz sessions across channels.

    Each channel can run at most one active session at a time. Sessions never
    share state; the controller only routes calls to the right one.
    """

    def __init__(
        self,
        data_manager: DataManager,
        config_manager: ConfigManager,
        session_factory: Optional[Callable[..., QuizSession]] = None
    ):
        """
        Initialize the quiz controller.

        Args:
            data_manager: Source of loaded questions
            config_manager: Source of default quiz settings
            session_factory: Builds sessions, defaults to QuizSession
        """
        self.logger = logging.getLogger(__name__)
        self.data_manager = data_manager
        self.config_manager = config_manager
        self._session_factory = session_factory or QuizSession

        self._active_sessions: Dict[int, QuizSession] = {}
        self._start_times: Dict[int, datetime] = {}

        self.logger.info("QuizController initialized")

    def create_session(
        self,
        channel_id: int,
        listeners: Optional[Dict[QuizEvent, Callable[[Any], None]]] = None,
        category: Optional[Category] = None,
        settings: Optional[QuizSettings] = None
    ) -> QuizSession:
        """
        Create and start a quiz session for a channel.

        Args:
            channel_id: Channel identifier
            listeners: Event handlers registered before the first question
            category: Restrict the pool to one category
            settings: Session settings, uses the global config if None

        Returns:
            The started session

        Raises:
            SessionConflictError: If the channel already has an active session
            ValueError: If there are no questions for the request
        """
        if self.has_active_session(channel_id):
            self.logger.warning(f"Attempted to create session for channel {channel_id} but session already exists")
            raise SessionConflictError(f"Channel {channel_id} already has an active quiz")

        repository = self.data_manager.get_repository()
        pool = repository.by_category(category) if category else repository.questions
        if not pool:
            raise ValueError(f"No questions found for category: {category.value if category else 'any'}")

        if settings is None:
            settings = self.config_manager.get_quiz_settings()

        session = self._session_factory(settings=settings, name=f"channel-{channel_id}")
        for event, handler in (listeners or {}).items():
            session.add_listener(event, handler)
        session.add_listener(QuizEvent.QUIZ_COMPLETE, self._make_completion_handler(channel_id, session))

        self._active_sessions[channel_id] = session
        self._start_times[channel_id] = datetime.now()
        try:
            session.initialize(pool)
        except Exception:
            self._discard(channel_id, session)
            raise

        self.logger.info(
            f"Created quiz session for channel {channel_id}: "
            f"category={category.value if category else 'all'}, questions={len(session.questions)}",
            extra={
                'event_type': 'session_created',
                'channel_id': channel_id,
                'question_count': len(session.questions),
                'timestamp': time.time()
            }
        )
        return session

    def _make_completion_handler(self, channel_id: int, session: QuizSession) -> Callable[[QuizStatistics], None]:
        def on_complete(statistics: QuizStatistics) -> None:
            self._discard(channel_id, session)
            self.logger.info(f"Quiz completed for channel {channel_id}, final score {statistics.final_score}")
        return on_complete

    def _discard(self, channel_id: int, session: QuizSession) -> None:
        # Only drop the entry if it still belongs to this session
        if self._active_sessions.get(channel_id) is session:
            del self._active_sessions[channel_id]
            self._start_times.pop(channel_id, None)

    def start_quiz(
        self,
        channel_id: int,
        listeners: Optional[Dict[QuizEvent, Callable[[Any], None]]] = None,
        category: Optional[Category] = None
    ) -> Dict[str, Any]:
        """
        Start a quiz, reporting the outcome as a result dictionary.

        Returns:
            Dictionary with success status, messages and session info
        """
        try:
            self.create_session(channel_id, listeners=listeners, category=category)
        except SessionConflictError as e:
            return {
                'success': False,
                'message': str(e),
                'user_message': "❌ Ya hay un quiz en curso en este canal. Usa /stop para terminarlo.",
                'session_info': self.get_session_progress(channel_id)
            }
        except ValueError as e:
            self.logger.error(f"Failed to start quiz for channel {channel_id}: {e}")
            return {
                'success': False,
                'message': str(e),
                'user_message': "❌ No hay preguntas disponibles para ese quiz.",
                'session_info': None
            }

        return {
            'success': True,
            'message': f"Quiz started in channel {channel_id}",
            'session_info': self.get_session_progress(channel_id)
        }

    def get_session(self, channel_id: int) -> Optional[QuizSession]:
        return self._active_sessions.get(channel_id)

    def has_active_session(self, channel_id: int) -> bool:
        session = self._active_sessions.get(channel_id)
        return session is not None and session.is_active

    def get_session_state(self, channel_id: int) -> SessionState:
        session = self._active_sessions.get(channel_id)
        if session is None:
            return SessionState.UNINITIALIZED
        return session.state

    def _require_session(self, channel_id: int) -> QuizSession:
        session = self._active_sessions.get(channel_id)
        if session is None or not session.is_active:
            raise SessionNotFoundError(f"No active quiz in channel {channel_id}")
        return session

    def answer(self, channel_id: int, answer_index: int) -> bool:
        """
        Select an answer in the channel's session.

        Returns:
            True if the answer was recorded

        Raises:
            SessionNotFoundError: If the channel has no active session
        """
        return self._require_session(channel_id).select_answer(answer_index)

    def advance(self, channel_id: int) -> bool:
        """
        Move the channel's session to the next question.

        Raises:
            SessionNotFoundError: If the channel has no active session
        """
        return self._require_session(channel_id).next_question()

    def toggle_timer(self, channel_id: int) -> bool:
        """
        Pause or resume the channel's countdown.

        Returns:
            True if the countdown is running afterwards

        Raises:
            SessionNotFoundError: If the channel has no active session
        """
        running = self._require_session(channel_id).toggle_timer()
        self.logger.info(
            f"Timer {'resumed' if running else 'paused'} for channel {channel_id}",
            extra={
                'event_type': 'session_timer_toggled',
                'channel_id': channel_id,
                'running': running,
                'timestamp': time.time()
            }
        )
        return running

    def stop_quiz(self, channel_id: int) -> Dict[str, Any]:
        """
        End the channel's quiz early.

        Returns:
            Dictionary with success status, message and final statistics
        """
        session = self._active_sessions.get(channel_id)
        if session is None or not session.is_active:
            return {
                'success': False,
                'message': f"No active quiz in channel {channel_id}",
                'statistics': None
            }

        session_info = self.get_session_progress(channel_id)
        session.exit_quiz()
        # exit_quiz removes the session through the completion handler
        self._discard(channel_id, session)

        self.logger.info(f"Stopped quiz session for channel {channel_id}")
        return {
            'success': True,
            'message': f"Quiz stopped in channel {channel_id}",
            'session_info': session_info,
            'statistics': session.get_statistics()
        }

    def get_session_progress(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """
        Get progress information for a channel's session.

        Returns:
            Dictionary with progress info, None if there is no session
        """
        session = self._active_sessions.get(channel_id)
        if session is None:
            return None

        settings = session.settings
        return {
            'current_question': session.current_index + 1,
            'total_questions': len(session.questions),
            'score': session.score,
            'progress': session.get_progress(),
            'time_remaining': session.time_remaining,
            'timer_running': session.timer_running,
            'is_active': session.is_active,
            'start_time': self._start_times.get(channel_id),
            'settings': {
                'question_count': settings.question_count,
                'random_order': settings.random_order,
                'time_limit': settings.time_limit
            }
        }

    def get_all_active_sessions(self) -> Dict[int, Dict[str, Any]]:
        return {
            channel_id: self.get_session_progress(channel_id)
            for channel_id in list(self._active_sessions)
        }

    def stop_all(self) -> List[int]:
        """Stop every active session, returning the affected channel ids."""
        stopped = []
        for channel_id in list(self._active_sessions):
            if self.stop_quiz(channel_id)['success']:
                stopped.append(channel_id)
        return stopped
