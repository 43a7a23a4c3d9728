"""
Unit tests for ConfigManager class.
"""
import logging
import unittest

from mcm_quiz.config_manager import ConfigManager
from mcm_quiz.models import QuizSettings


class TestConfigManager(unittest.TestCase):
    """Test cases for ConfigManager functionality."""

    def setUp(self):
        """Set up test fixtures."""
        logging.disable(logging.CRITICAL)
        self.config_manager = ConfigManager()

    def tearDown(self):
        logging.disable(logging.NOTSET)

    def test_default_settings(self):
        settings = self.config_manager.get_quiz_settings()
        self.assertEqual(settings, QuizSettings(question_count=10, random_order=True, time_limit=90))
        self.assertIsNone(self.config_manager.get_question_directory())

    def test_get_quiz_settings_returns_copy(self):
        settings = self.config_manager.get_quiz_settings()
        settings.question_count = 99
        self.assertEqual(self.config_manager.get_question_count(), 10)

    def test_set_question_count_valid(self):
        for count in (1, 25, 100):
            with self.subTest(count=count):
                result = self.config_manager.set_question_count(count)
                self.assertTrue(result['success'])
                self.assertIn(str(count), result['user_message'])
                self.assertEqual(self.config_manager.get_question_count(), count)

    def test_set_question_count_out_of_range(self):
        for count in (0, -1, 101):
            with self.subTest(count=count):
                result = self.config_manager.set_question_count(count)
                self.assertFalse(result['success'])
                self.assertIn('error', result)
                self.assertIn('user_message', result)
        self.assertEqual(self.config_manager.get_question_count(), 10)

    def test_set_question_count_wrong_type(self):
        for value in ("5", 5.0, None, True):
            with self.subTest(value=value):
                self.assertFalse(self.config_manager.set_question_count(value)['success'])

    def test_set_random_order(self):
        self.assertTrue(self.config_manager.set_random_order(False)['success'])
        self.assertFalse(self.config_manager.get_random_order())
        self.assertFalse(self.config_manager.set_random_order("yes")['success'])
        self.assertFalse(self.config_manager.get_random_order())

    def test_toggle_random_order(self):
        result = self.config_manager.toggle_random_order()
        self.assertTrue(result['success'])
        self.assertFalse(result['new_value'])
        self.assertFalse(self.config_manager.get_random_order())

        result = self.config_manager.toggle_random_order()
        self.assertTrue(result['new_value'])

    def test_set_time_limit_bounds(self):
        self.assertTrue(self.config_manager.set_time_limit(5)['success'])
        self.assertTrue(self.config_manager.set_time_limit(300)['success'])
        self.assertEqual(self.config_manager.get_time_limit(), 300)

        for seconds in (4, 301, 0):
            with self.subTest(seconds=seconds):
                result = self.config_manager.set_time_limit(seconds)
                self.assertFalse(result['success'])
                self.assertIn("segundos", result['user_message'])
        self.assertEqual(self.config_manager.get_time_limit(), 300)

    def test_set_question_directory(self):
        self.assertTrue(self.config_manager.set_question_directory("./banco")['success'])
        self.assertEqual(self.config_manager.get_question_directory(), "./banco")
        self.assertTrue(self.config_manager.set_question_directory(None)['success'])
        self.assertIsNone(self.config_manager.get_question_directory())
        self.assertFalse(self.config_manager.set_question_directory("   ")['success'])
        self.assertFalse(self.config_manager.set_question_directory(42)['success'])

    def test_apply_config_valid(self):
        result = self.config_manager.apply_config({
            'bot': {'token': 'ignored'},
            'quiz': {
                'question_directory': './banco',
                'default_question_count': 5,
                'default_random_order': False,
                'default_time_limit': 30
            }
        })

        self.assertTrue(result['success'])
        self.assertEqual(result['rejected'], [])
        self.assertEqual(
            self.config_manager.get_quiz_settings(),
            QuizSettings(question_count=5, random_order=False, time_limit=30)
        )
        self.assertEqual(self.config_manager.get_question_directory(), './banco')

    def test_apply_config_skips_invalid_values(self):
        result = self.config_manager.apply_config({
            'quiz': {
                'default_question_count': 500,
                'default_time_limit': 20
            }
        })

        self.assertFalse(result['success'])
        self.assertEqual(len(result['rejected']), 1)
        self.assertTrue(result['rejected'][0].startswith('default_question_count'))
        self.assertEqual(self.config_manager.get_question_count(), 10)
        self.assertEqual(self.config_manager.get_time_limit(), 20)

    def test_apply_config_without_quiz_section(self):
        self.assertTrue(self.config_manager.apply_config({})['success'])
        self.assertTrue(self.config_manager.apply_config(None)['success'])
        self.assertEqual(self.config_manager.get_question_count(), 10)

    def test_reset_to_defaults(self):
        self.config_manager.set_question_count(3)
        self.config_manager.set_time_limit(15)
        self.config_manager.set_question_directory("./otro")

        self.config_manager.reset_to_defaults()

        self.assertEqual(self.config_manager.get_quiz_settings(), QuizSettings())
        self.assertIsNone(self.config_manager.get_question_directory())

    def test_validate_settings(self):
        self.assertTrue(self.config_manager.validate_settings()['valid'])

        self.config_manager._global_settings.time_limit = 1
        validation = self.config_manager.validate_settings()
        self.assertFalse(validation['valid'])
        self.assertEqual(len(validation['issues']), 1)

    def test_settings_summary(self):
        self.config_manager.set_random_order(False)
        summary = self.config_manager.get_settings_summary()
        self.assertIn("Preguntas: 10", summary)
        self.assertIn("secuencial", summary)
        self.assertIn("90 segundos", summary)


if __name__ == '__main__':
    unittest.main()
