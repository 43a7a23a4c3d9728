"""
Tests for the Discord rendering of quiz sessions.
"""
import logging
import unittest
from dataclasses import replace
from unittest.mock import AsyncMock, Mock

import discord

from mcm_quiz.config_manager import ConfigManager
from mcm_quiz.models import (
    Answer,
    AnswerSelected,
    Achievements,
    Calculation,
    Category,
    QuestionChanged,
    QuizStatistics,
)
from mcm_quiz.presenter import (
    AnswerView,
    ChannelPresenter,
    NextView,
    build_feedback_embed,
    build_question_embed,
    build_results_embed,
    describe_calculation,
    format_factorization,
    format_time_bar,
    send_ephemeral,
)
from mcm_quiz.question_repository import QuestionRepository
from mcm_quiz.quiz_controller import QuizController
from mcm_quiz.quiz_session import QuizSession
from tests.test_fixtures import FakeTimer, MockDiscordObjects, TestFixtures

OWNER_ID = 67890


class TestFormatting(unittest.TestCase):
    """Test cases for the text helpers."""

    def test_format_factorization(self):
        self.assertEqual(format_factorization({2: 3, 3: 2}), "2³ × 3²")
        self.assertEqual(format_factorization({7: 1}), "7")
        self.assertEqual(format_factorization({5: 1, 2: 12}), "2¹² × 5")
        self.assertEqual(format_factorization({}), "1")

    def test_describe_gcd_and_lcm(self):
        self.assertEqual(describe_calculation(Calculation("mcm", 36, (12, 18))), "mcm(12, 18) = 36")
        self.assertEqual(describe_calculation(Calculation("mcd", 6, (12, 18))), "mcd(12, 18) = 6")

    def test_describe_two_steps(self):
        calculation = Calculation(
            "mcd", 18, (54, 72),
            second_step=Calculation("division", 3, (54, 18))
        )
        self.assertEqual(describe_calculation(calculation), "mcd(54, 72) = 18\n54 ÷ 18 = 3")

    def test_describe_find_missing(self):
        calculation = Calculation(
            "find_missing", 24,
            known_values={"a": 18, "mcd": 6, "mcm": 72},
            formula="b = (mcd × mcm) / a"
        )
        text = describe_calculation(calculation)
        self.assertTrue(text.startswith("b = (mcd × mcm) / a"))
        self.assertIn("a = 18, mcd = 6, mcm = 72", text)
        self.assertTrue(text.endswith("b = 24"))

    def test_format_time_bar(self):
        self.assertEqual(format_time_bar(10, 10), "▰" * 10)
        self.assertEqual(format_time_bar(5, 10), "▰" * 5 + "▱" * 5)
        self.assertEqual(format_time_bar(0, 10), "▱" * 10)
        self.assertEqual(format_time_bar(3, 0), "▱" * 10)


class TestEmbeds(unittest.TestCase):
    """Test cases for the question, feedback and results embeds."""

    def setUp(self):
        self.question = TestFixtures.make_question(
            "mcm_a", Category.LCM, correct_index=0,
            calculation=Calculation("mcm", 36, (12, 18))
        )

    def test_question_embed(self):
        embed = build_question_embed(QuestionChanged(self.question, 1, 5), 220, 4, 10)

        self.assertEqual(embed.title, "🎯 Pregunta 2/5")
        self.assertEqual(embed.description, self.question.text)
        self.assertEqual([f.name for f in embed.fields], ["📚 Tema", "⚠️ Tiempo", "🏆 Puntuación"])
        self.assertTrue(embed.fields[0].value.startswith("MCM"))
        self.assertTrue(embed.fields[1].value.startswith("4s"))
        self.assertEqual(embed.fields[2].value, "220")

    def test_feedback_embed_correct(self):
        answer = self.question.answers[0]
        embed = build_feedback_embed(AnswerSelected(self.question, answer, True, answer.explanation), 120, 120)

        self.assertEqual(embed.title, "✅ ¡Correcto!")
        names = [f.name for f in embed.fields]
        self.assertNotIn("✔️ Respuesta correcta", names)
        self.assertIn("🧮 Cálculo", names)
        self.assertIn("mcm(12, 18) = 36", embed.fields[0].value)
        self.assertIn("➕ Puntos", names)

    def test_feedback_embed_incorrect_shows_correct_answer(self):
        answer = self.question.answers[2]
        embed = build_feedback_embed(AnswerSelected(self.question, answer, False, answer.explanation), 0, 100)

        self.assertEqual(embed.title, "❌ Incorrecto")
        self.assertEqual(embed.description, "mcm_a explanation 2")
        self.assertEqual(embed.fields[0].name, "✔️ Respuesta correcta")
        self.assertTrue(embed.fields[0].value.startswith("A) mcm_a answer 0"))
        self.assertNotIn("➕ Puntos", [f.name for f in embed.fields])

    def test_feedback_embed_timeout(self):
        embed = build_feedback_embed(AnswerSelected(self.question, None, False, "Se acabó el tiempo"), 0, 0)
        self.assertEqual(embed.title, "⏰ ¡Tiempo agotado!")

    def test_results_embed(self):
        statistics = QuizStatistics(
            total_questions=3, correct_answers=3, incorrect_answers=0,
            accuracy_percent=100, average_time_per_question=4, final_score=410,
            achievements=Achievements(correct_streak=3, lcm_correct=1, gcd_correct=1, perfect_score=True)
        )
        embed = build_results_embed(statistics)

        self.assertEqual(embed.title, "🎉 ¡Quiz completado!")
        self.assertIn("410", embed.description)
        self.assertIn("Correctas: 3/3", embed.fields[0].value)
        self.assertIn("¡Puntuación perfecta!", embed.fields[1].value)


class TestViews(unittest.IsolatedAsyncioTestCase):
    """Views are built inside the event loop, like discord.py requires."""

    async def test_answer_view_buttons(self):
        question = TestFixtures.make_question("q", correct_index=1)
        view = AnswerView(Mock(), QuestionChanged(question, 0, 3))

        labels = [button.label for button in view.children]
        self.assertEqual(labels, ["A) q answer 0", "B) q answer 1", "C) q answer 2"])
        self.assertTrue(all(not button.disabled for button in view.children))
        self.assertIsNone(view.timeout)

    async def test_revealed_answer_view(self):
        question = TestFixtures.make_question("q", correct_index=1)
        view = AnswerView(Mock(), QuestionChanged(question, 0, 3), revealed=True, selected_index=2)

        styles = [button.style for button in view.children]
        self.assertEqual(styles, [
            discord.ButtonStyle.secondary,
            discord.ButtonStyle.success,
            discord.ButtonStyle.danger,
        ])
        self.assertTrue(all(button.disabled for button in view.children))

    async def test_long_labels_are_truncated(self):
        question = TestFixtures.make_question("q" * 100)
        view = AnswerView(Mock(), QuestionChanged(question, 0, 1))
        self.assertTrue(all(len(button.label) <= 80 for button in view.children))

    async def test_next_view_label(self):
        self.assertEqual(NextView(Mock(), 0, is_last=False).children[0].label, "Siguiente ➡️")
        self.assertEqual(NextView(Mock(), 2, is_last=True).children[0].label, "Ver resultados 🏁")

    async def test_button_callback_reaches_presenter(self):
        presenter = Mock()
        presenter.handle_answer = AsyncMock()
        question = TestFixtures.make_question("q")
        view = AnswerView(presenter, QuestionChanged(question, 4, 5))
        interaction = MockDiscordObjects.create_mock_interaction()

        await view.children[2].callback(interaction)

        presenter.handle_answer.assert_awaited_once_with(interaction, 4, 2)

    async def test_send_ephemeral_uses_followup_when_acknowledged(self):
        interaction = MockDiscordObjects.create_mock_interaction()
        interaction.response.is_done.return_value = True

        await send_ephemeral(interaction, "hola")

        interaction.followup.send.assert_awaited_once_with("hola", ephemeral=True)
        interaction.response.send_message.assert_not_awaited()


class TestChannelPresenter(unittest.IsolatedAsyncioTestCase):
    """End-to-end rendering of a session with a fake timer and a mock channel."""

    async def asyncSetUp(self):
        logging.disable(logging.CRITICAL)
        self.channel_id = 12345

        data_manager = Mock()
        data_manager.get_repository.return_value = QuestionRepository(TestFixtures.create_sample_questions())
        config_manager = ConfigManager()
        config_manager.set_question_count(2)
        config_manager.set_random_order(False)
        config_manager.set_time_limit(10)

        self.timers = []
        self.controller = QuizController(data_manager, config_manager, session_factory=self._make_session)

        self.messages = []
        self.channel = MockDiscordObjects.create_mock_channel(self.channel_id)
        self.channel.send = AsyncMock(side_effect=self._send)

        self.presenter = ChannelPresenter(self.channel, self.controller, self.channel_id, owner_id=OWNER_ID)
        self.presenter.start()
        result = self.controller.start_quiz(self.channel_id, listeners=self.presenter.listeners())
        self.assertTrue(result['success'])
        await self.presenter.drain()

    async def asyncTearDown(self):
        self.controller.stop_all()
        self.presenter.close()
        await self.presenter.wait_closed()
        logging.disable(logging.NOTSET)

    def _make_session(self, settings, name):
        return QuizSession(settings=settings, name=name, timer_factory=self._make_timer)

    def _make_timer(self, on_tick):
        timer = FakeTimer(on_tick)
        self.timers.append(timer)
        return timer

    def _send(self, *args, **kwargs):
        message = MockDiscordObjects.create_mock_message(len(self.messages))
        message.sent_kwargs = kwargs
        self.messages.append(message)
        return message

    def interaction(self, user_id=OWNER_ID):
        return MockDiscordObjects.create_mock_interaction(self.channel_id, user_id)

    async def test_first_question_is_sent_with_buttons(self):
        self.assertEqual(len(self.messages), 1)
        sent = self.messages[0].sent_kwargs
        self.assertEqual(sent['embed'].title, "🎯 Pregunta 1/2")
        self.assertIsInstance(sent['view'], AnswerView)
        self.assertEqual(len(sent['view'].children), 3)

    async def test_correct_answer_reveals_feedback(self):
        interaction = self.interaction()

        await self.presenter.handle_answer(interaction, 0, 0)
        await self.presenter.drain()

        interaction.response.defer.assert_awaited_once()
        question_message = self.messages[0]
        revealed_view = question_message.edit.call_args.kwargs['view']
        self.assertTrue(all(button.disabled for button in revealed_view.children))

        feedback = self.messages[1].sent_kwargs
        self.assertEqual(feedback['embed'].title, "✅ ¡Correcto!")
        self.assertIsInstance(feedback['view'], NextView)
        self.assertEqual(self.controller.get_session(self.channel_id).score, 120)

    async def test_reveal_marks_pressed_button_among_equal_answers(self):
        wrong = Answer(text="12", correct=False, explanation="No es múltiplo de 18")
        question = replace(
            TestFixtures.make_question("dup"),
            answers=(Answer(text="36", correct=True, explanation="mcm(12, 18) = 36"), wrong, wrong)
        )

        self.presenter.on_question_changed(QuestionChanged(question, 0, 1))
        self.presenter.on_answer_selected(
            AnswerSelected(question, question.answers[2], False, wrong.explanation, selected_index=2)
        )
        await self.presenter.drain()

        revealed_view = self.messages[1].edit.call_args.kwargs['view']
        self.assertEqual(
            [button.style for button in revealed_view.children],
            [discord.ButtonStyle.success, discord.ButtonStyle.secondary, discord.ButtonStyle.danger]
        )

    async def test_only_owner_may_answer(self):
        interaction = self.interaction(user_id=1)

        await self.presenter.handle_answer(interaction, 0, 0)

        interaction.response.send_message.assert_awaited_once()
        self.assertIn("🔒", interaction.response.send_message.call_args[0][0])
        self.assertEqual(self.controller.get_session(self.channel_id).user_answers, [])

    async def test_second_answer_is_rejected(self):
        await self.presenter.handle_answer(self.interaction(), 0, 1)
        interaction = self.interaction()

        await self.presenter.handle_answer(interaction, 0, 0)

        self.assertIn("ya tiene respuesta", interaction.response.send_message.call_args[0][0])

    async def test_stale_buttons_are_ignored(self):
        interaction = self.interaction()

        await self.presenter.handle_answer(interaction, 1, 0)
        self.assertIn("ya no está activa", interaction.response.send_message.call_args[0][0])

        interaction = self.interaction()
        await self.presenter.handle_next(interaction, 1)
        self.assertIn("ya avanzó", interaction.response.send_message.call_args[0][0])

    async def test_next_retires_feedback_and_sends_question(self):
        await self.presenter.handle_answer(self.interaction(), 0, 0)
        await self.presenter.drain()

        await self.presenter.handle_next(self.interaction(), 0)
        await self.presenter.drain()

        self.messages[1].edit.assert_awaited_with(view=None)
        self.assertEqual(self.messages[2].sent_kwargs['embed'].title, "🎯 Pregunta 2/2")
        self.assertEqual(self.messages[2].sent_kwargs['embed'].fields[2].value, "120")

    async def test_countdown_edits_are_throttled(self):
        timer = self.timers[0]

        timer.fire(4)
        await self.presenter.drain()
        self.messages[0].edit.assert_not_awaited()

        timer.fire(1)
        await self.presenter.drain()
        embed = self.messages[0].edit.call_args.kwargs['embed']
        self.assertTrue(embed.fields[1].value.startswith("5s"))

    async def test_timeout_sends_feedback(self):
        self.timers[0].fire(10)
        await self.presenter.drain()

        feedback = self.messages[-1].sent_kwargs
        self.assertEqual(feedback['embed'].title, "⏰ ¡Tiempo agotado!")
        self.assertFalse(self.timers[0].is_running)

    async def test_completion_sends_results_and_closes(self):
        for index in range(2):
            session = self.controller.get_session(self.channel_id)
            await self.presenter.handle_answer(self.interaction(), index, session.get_current_question().correct_index)
            await self.presenter.handle_next(self.interaction(), index)

        await self.presenter.wait_closed()

        last = self.messages[-1].sent_kwargs
        self.assertEqual(last['embed'].title, "🎉 ¡Quiz completado!")
        self.assertIsNone(self.controller.get_session(self.channel_id))
        self.assertNotIn('view', last)

    async def test_stop_sends_results(self):
        self.controller.stop_quiz(self.channel_id)
        await self.presenter.wait_closed()

        self.assertEqual(self.messages[-1].sent_kwargs['embed'].title, "🎉 ¡Quiz completado!")

    async def test_failed_render_does_not_stop_worker(self):
        self.channel.send.side_effect = [RuntimeError("boom"), self._send(embed=None)]

        await self.presenter.handle_answer(self.interaction(), 0, 0)
        await self.presenter.handle_next(self.interaction(), 0)
        await self.presenter.drain()

        self.assertEqual(self.channel.send.await_count, 3)


if __name__ == '__main__':
    unittest.main()
