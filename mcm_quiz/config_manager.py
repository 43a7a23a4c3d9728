"""
Configuration manager for quiz settings and parameters.
"""
import logging
from typing import Optional, Dict, Any

from .models import QuizSettings


class ConfigManager:
    """Manages quiz configuration settings with validation."""

    # Default configuration values
    DEFAULT_QUESTION_COUNT = 10
    DEFAULT_RANDOM_ORDER = True
    DEFAULT_TIME_LIMIT = 90
    DEFAULT_QUESTION_DIRECTORY = None  # Bank bundled with the package

    # Validation limits
    MIN_TIME_LIMIT = 5
    MAX_TIME_LIMIT = 300  # 5 minutes
    MIN_QUESTION_COUNT = 1
    MAX_QUESTION_COUNT = 100

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._global_settings = QuizSettings(
            question_count=self.DEFAULT_QUESTION_COUNT,
            random_order=self.DEFAULT_RANDOM_ORDER,
            time_limit=self.DEFAULT_TIME_LIMIT
        )
        self._question_directory: Optional[str] = self.DEFAULT_QUESTION_DIRECTORY

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get a copy of the current quiz settings.

        Returns:
            QuizSettings object with current configuration
        """
        return QuizSettings(
            question_count=self._global_settings.question_count,
            random_order=self._global_settings.random_order,
            time_limit=self._global_settings.time_limit
        )

    def _check_int_range(self, value: Any, label: str, minimum: int, maximum: int, unit: str = "") -> Optional[Dict[str, Any]]:
        """Return a failure result if value is not an int within bounds, else None."""
        if not isinstance(value, int) or isinstance(value, bool):
            error_msg = f"{label} must be an integer, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Valor inválido: se esperaba un número, se recibió {type(value).__name__}"
            }

        if value < minimum or value > maximum:
            error_msg = f"{label} must be between {minimum} and {maximum}, got {value}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Fuera de rango: el valor debe estar entre {minimum} y {maximum}{unit}"
            }

        return None

    def set_question_count(self, count: int) -> Dict[str, Any]:
        """
        Set the number of questions per quiz.

        Args:
            count: Number of questions

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_int_range(
            count, "Question count", self.MIN_QUESTION_COUNT, self.MAX_QUESTION_COUNT
        )
        if failure:
            return failure

        self._global_settings.question_count = count
        self.logger.info(f"Question count set to {count}")
        return {
            'success': True,
            'message': f"Question count set to {count}",
            'user_message': f"✅ Número de preguntas: {count}"
        }

    def get_question_count(self) -> int:
        return self._global_settings.question_count

    def set_random_order(self, random_order: bool) -> Dict[str, Any]:
        """
        Set whether questions should be presented in random order.

        Args:
            random_order: True for random order, False for sequential

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(random_order, bool):
            error_msg = f"Random order must be a boolean, got {type(random_order).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Valor inválido: se esperaba verdadero/falso, se recibió {type(random_order).__name__}"
            }

        self._global_settings.random_order = random_order
        order_type = "random" if random_order else "sequential"
        self.logger.info(f"Question order set to {order_type}")

        return {
            'success': True,
            'message': f"Question order set to {order_type}",
            'user_message': f"✅ Orden de preguntas: {'aleatorio' if random_order else 'secuencial'}"
        }

    def get_random_order(self) -> bool:
        return self._global_settings.random_order

    def toggle_random_order(self) -> Dict[str, Any]:
        """
        Toggle the random order setting.

        Returns:
            Dictionary with success status, new value, and user-friendly message
        """
        new_value = not self._global_settings.random_order
        result = self.set_random_order(new_value)
        if result['success']:
            result['new_value'] = new_value
        return result

    def set_time_limit(self, seconds: int) -> Dict[str, Any]:
        """
        Set the time limit for each question.

        Args:
            seconds: Time limit in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        failure = self._check_int_range(
            seconds, "Time limit", self.MIN_TIME_LIMIT, self.MAX_TIME_LIMIT, " segundos"
        )
        if failure:
            return failure

        self._global_settings.time_limit = seconds
        self.logger.info(f"Time limit set to {seconds} seconds")
        return {
            'success': True,
            'message': f"Time limit set to {seconds} seconds",
            'user_message': f"✅ Tiempo por pregunta: {seconds} segundos"
        }

    def get_time_limit(self) -> int:
        return self._global_settings.time_limit

    def set_question_directory(self, directory: Optional[str]) -> Dict[str, Any]:
        """
        Set the directory the question bank is loaded from.

        Args:
            directory: Path to the question files, or None for the bundled bank
        """
        if directory is not None and (not isinstance(directory, str) or not directory.strip()):
            error_msg = f"Question directory must be a non-empty string, got {directory!r}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ La ruta del banco de preguntas no es válida"
            }

        self._question_directory = directory
        self.logger.info(f"Question directory set to {directory or 'bundled bank'}")
        return {
            'success': True,
            'message': f"Question directory set to {directory or 'bundled bank'}"
        }

    def get_question_directory(self) -> Optional[str]:
        return self._question_directory

    def apply_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply the 'quiz' section of an application config mapping.

        Invalid values are logged and skipped; the defaults stay in place.

        Args:
            config: Full application config (as loaded from config.json)

        Returns:
            Dictionary with success status and the list of rejected settings
        """
        quiz_config = config.get('quiz', {}) if isinstance(config, dict) else {}
        rejected = []

        setters = (
            ('question_directory', self.set_question_directory),
            ('default_question_count', self.set_question_count),
            ('default_random_order', self.set_random_order),
            ('default_time_limit', self.set_time_limit),
        )
        for key, setter in setters:
            if key not in quiz_config:
                continue
            result = setter(quiz_config[key])
            if not result['success']:
                rejected.append(f"{key}: {result['error']}")

        if rejected:
            self.logger.warning(f"Ignored {len(rejected)} invalid config values: {rejected}")
        else:
            self.logger.info("Configuration applied successfully")

        return {
            'success': not rejected,
            'rejected': rejected
        }

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._global_settings = QuizSettings(
            question_count=self.DEFAULT_QUESTION_COUNT,
            random_order=self.DEFAULT_RANDOM_ORDER,
            time_limit=self.DEFAULT_TIME_LIMIT
        )
        self._question_directory = self.DEFAULT_QUESTION_DIRECTORY
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        settings = self._global_settings

        if (not isinstance(settings.question_count, int) or
                settings.question_count < self.MIN_QUESTION_COUNT or
                settings.question_count > self.MAX_QUESTION_COUNT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid question count: {settings.question_count}")

        if not isinstance(settings.random_order, bool):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid random order setting: {settings.random_order}")

        if (not isinstance(settings.time_limit, int) or
                settings.time_limit < self.MIN_TIME_LIMIT or
                settings.time_limit > self.MAX_TIME_LIMIT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid time limit: {settings.time_limit}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        settings = self._global_settings
        order_str = "aleatorio" if settings.random_order else "secuencial"

        return (
            f"Configuración del quiz:\n"
            f"• Preguntas: {settings.question_count}\n"
            f"• Orden: {order_str}\n"
            f"• Tiempo: {settings.time_limit} segundos por pregunta"
        )
