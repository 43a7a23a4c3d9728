"""
Countdown timing for quiz sessions.
Runs the per-question one-second tick on the asyncio event loop.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Optional

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(timer_name: str, interval: float) -> None:
        """Log timer countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - Timer {timer_name}, Interval {interval}s",
            extra={
                'event_type': 'timer_countdown_start',
                'timer_name': timer_name,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(timer_name: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100 if total_duration else 100.0
            logger.debug(
                f"Timer lifecycle: UPDATE - Timer {timer_name}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'timer_name': timer_name,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(timer_name: str, completion_type: str, ticks: int) -> None:
        """Log timer completion (cancellation or error)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Timer {timer_name}, Type {completion_type}, Ticks {ticks}",
            extra={
                'event_type': 'timer_completed',
                'timer_name': timer_name,
                'completion_type': completion_type,
                'ticks': ticks,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(timer_name: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Timer {timer_name}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'timer_name': timer_name,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(timer_name: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Timer {timer_name}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'timer_name': timer_name,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(timer_name: str, details: str) -> None:
        """Log an attempt to run two countdowns at once."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Timer {timer_name}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'timer_name': timer_name,
                'details': details,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """
    Recurring countdown tick backed by an asyncio task.

    The timer only knows how to call ``on_tick`` once per interval; the
    remaining time lives in the session that owns the timer. ``on_tick`` runs
    on the event loop thread, so it never interleaves with other code
    running on that loop.
    """

    def __init__(self, on_tick: Callable[[], Any], interval: float = 1.0, name: Optional[str] = None):
        """
        Initialize the timer.

        Args:
            on_tick: Called once per elapsed interval
            interval: Seconds between ticks
            name: Label used in lifecycle logs
        """
        self._on_tick = on_tick
        self._interval = interval
        self._name = name or f"timer-{id(self)}"
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = True
        self._ticks = 0

    def start(self) -> None:
        """
        Start ticking, replacing any countdown this timer already runs.

        Raises:
            RuntimeError: If called outside a running event loop
        """
        if self.is_running:
            TimerLifecycleLogger.log_race_condition_detected(
                self._name,
                "start requested while a countdown is active, cancelling it first"
            )
        self.cancel()

        loop = asyncio.get_running_loop()
        self._is_cancelled = False
        self._ticks = 0
        self._task = loop.create_task(self._run())
        TimerLifecycleLogger.log_timer_state_transition(self._name, "stopped", "running", "start requested")

    async def _run(self) -> None:
        TimerLifecycleLogger.log_timer_start(self._name, self._interval)
        own_task = asyncio.current_task()
        try:
            # A restart hands the timer to a new task; this one must stop ticking
            while self._task is own_task and not self._is_cancelled:
                await asyncio.sleep(self._interval)
                if self._task is not own_task or self._is_cancelled:
                    break
                self._ticks += 1
                self._on_tick()

            TimerLifecycleLogger.log_timer_completion(self._name, "cancelled", self._ticks)

        except asyncio.CancelledError:
            TimerLifecycleLogger.log_timer_completion(self._name, "asyncio_cancelled", self._ticks)
            raise
        except Exception as e:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_error(self._name, "tick_execution_error", str(e), "_run")
            raise

    def cancel(self) -> None:
        """Stop ticking. Safe to call from inside ``on_tick`` and when already stopped."""
        was_running = self.is_running
        self._is_cancelled = True

        task = self._task
        self._task = None
        if task is None or task.done():
            return

        # A tick that cancels its own timer just lets the loop exit
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

        if was_running:
            TimerLifecycleLogger.log_timer_state_transition(self._name, "running", "stopped", "cancel requested")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def ticks(self) -> int:
        """Ticks delivered since the last start."""
        return self._ticks

    @property
    def name(self) -> str:
        return self._name
