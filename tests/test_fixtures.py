"""
Test fixtures and sample data for MCM/MCD quiz tests.
"""
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional
from unittest.mock import Mock, AsyncMock
import discord

from mcm_quiz.models import Answer, Calculation, Category, Difficulty, Question, QuizSettings


class FakeTimer:
    """Stand-in for QuizTimer; ticks only when the test calls fire()."""

    def __init__(self, on_tick: Callable[[], None]):
        self.on_tick = on_tick
        self.is_running = False
        self.start_count = 0
        self.cancel_count = 0

    def start(self) -> None:
        self.start_count += 1
        self.is_running = True

    def cancel(self) -> None:
        self.cancel_count += 1
        self.is_running = False

    def fire(self, times: int = 1) -> None:
        """Deliver ticks while the timer is running, like the real countdown."""
        for _ in range(times):
            if not self.is_running:
                return
            self.on_tick()


class TestFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def make_question(
        question_id: str,
        category: Category = Category.LCM,
        correct_index: int = 0,
        difficulty: Difficulty = Difficulty.BASIC,
        text: Optional[str] = None,
        keywords=(),
        calculation: Optional[Calculation] = None
    ) -> Question:
        """Build a three-answer question whose correct answer sits at correct_index."""
        answers = tuple(
            Answer(
                text=f"{question_id} answer {i}",
                correct=(i == correct_index),
                explanation=f"{question_id} explanation {i}"
            )
            for i in range(3)
        )
        return Question(
            id=question_id,
            category=category,
            difficulty=difficulty,
            text=text or f"Question {question_id}?",
            answers=answers,
            keywords=frozenset(keywords),
            calculation=calculation
        )

    @staticmethod
    def create_sample_questions() -> List[Question]:
        """Create sample questions for testing."""
        return [
            TestFixtures.make_question(
                "mcm_a", Category.LCM, correct_index=0,
                text="¿Cada cuántos días coinciden dos autobuses que pasan cada 12 y 18 días?",
                keywords=("autobuses", "coincidir")
            ),
            TestFixtures.make_question(
                "mcd_a", Category.GCD, correct_index=1,
                text="Un carpintero corta tablas de 90 y 120 cm en trozos iguales",
                keywords=("carpintero", "tablas"), difficulty=Difficulty.INTERMEDIATE
            ),
            TestFixtures.make_question(
                "mixed_a", Category.MIXED, correct_index=2,
                text="¿Cuántos paquetes de 18 salen de 54 caramelos?",
                keywords=("paquetes",)
            ),
            TestFixtures.make_question(
                "primes_a", Category.PRIMES, correct_index=0,
                text="Dos números primos 7 y 13", keywords=("primos",),
                difficulty=Difficulty.ADVANCED
            ),
            TestFixtures.make_question(
                "mcm_b", Category.LCM, correct_index=1,
                text="Luces que parpadean cada 4 y 6 segundos", keywords=("luces",)
            ),
        ]

    @staticmethod
    def create_sample_quiz_settings() -> QuizSettings:
        """Create sample quiz settings for testing."""
        return QuizSettings(
            question_count=3,
            random_order=False,
            time_limit=10
        )

    @staticmethod
    def create_question_json(question_id: str = "q1", category: str = "mcm", correct_index: int = 0) -> Dict:
        return {
            "id": question_id,
            "category": category,
            "difficulty": "basic",
            "question": f"Pregunta {question_id}?",
            "answers": [
                {"text": f"Respuesta {i}", "correct": i == correct_index, "explanation": f"Explicación {i}"}
                for i in range(3)
            ],
            "keywords": ["prueba", question_id],
            "calculation": {"operation": "mcm", "numbers": [4, 6], "result": 12}
        }

    @staticmethod
    def create_valid_quiz_json() -> Dict:
        """Create valid question bank JSON structure."""
        return {
            "quiz_name": "Banco de prueba",
            "questions": [
                TestFixtures.create_question_json("q1", "mcm", 0),
                TestFixtures.create_question_json("q2", "mcd", 1),
                TestFixtures.create_question_json("q3", "primes", 2),
            ]
        }

    @staticmethod
    def create_invalid_quiz_json_structures() -> List[Dict]:
        """Create various invalid question bank structures for testing."""
        two_correct = TestFixtures.create_question_json("bad")
        two_correct["answers"][1]["correct"] = True

        no_correct = TestFixtures.create_question_json("bad")
        no_correct["answers"][0]["correct"] = False

        two_answers = TestFixtures.create_question_json("bad")
        two_answers["answers"] = two_answers["answers"][:2]

        bad_category = TestFixtures.create_question_json("bad", category="fractions")

        missing_text = TestFixtures.create_question_json("bad")
        del missing_text["question"]

        return [
            # Missing 'questions' key
            {"quiz": [TestFixtures.create_question_json()]},
            # 'questions' is not an array
            {"questions": "not an array"},
            # Empty questions array
            {"questions": []},
            {"questions": [two_correct]},
            {"questions": [no_correct]},
            {"questions": [two_answers]},
            {"questions": [bad_category]},
            {"questions": [missing_text]},
            # Duplicate ids
            {"questions": [TestFixtures.create_question_json("dup"), TestFixtures.create_question_json("dup")]},
        ]

    @staticmethod
    def create_temp_quiz_files(temp_dir: str) -> Dict[str, Path]:
        """Create temporary question bank files for testing."""
        quiz_files = {}

        valid_file = Path(temp_dir) / "valid_quiz.json"
        with open(valid_file, 'w', encoding='utf-8') as f:
            json.dump(TestFixtures.create_valid_quiz_json(), f)
        quiz_files["valid"] = valid_file

        invalid_file = Path(temp_dir) / "invalid.json"
        with open(invalid_file, 'w', encoding='utf-8') as f:
            f.write("{ invalid json }")
        quiz_files["invalid"] = invalid_file

        invalid_structure_file = Path(temp_dir) / "invalid_structure.json"
        with open(invalid_structure_file, 'w', encoding='utf-8') as f:
            json.dump(TestFixtures.create_invalid_quiz_json_structures()[3], f)
        quiz_files["invalid_structure"] = invalid_structure_file

        non_json_file = Path(temp_dir) / "not_a_quiz.txt"
        with open(non_json_file, 'w', encoding='utf-8') as f:
            f.write("This is not a JSON file")
        quiz_files["non_json"] = non_json_file

        return quiz_files


class MockDiscordObjects:
    """Mock Discord objects for testing bot functionality."""

    @staticmethod
    def create_mock_interaction(channel_id: int = 12345, user_id: int = 67890) -> Mock:
        """Create mock Discord interaction."""
        interaction = Mock(spec=discord.Interaction)
        interaction.channel_id = channel_id
        interaction.channel = MockDiscordObjects.create_mock_channel(channel_id)
        interaction.user = Mock()
        interaction.user.id = user_id
        interaction.response = Mock()
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()
        interaction.response.defer = AsyncMock()
        interaction.followup = Mock()
        interaction.followup.send = AsyncMock()
        return interaction

    @staticmethod
    def create_mock_channel(channel_id: int = 12345) -> Mock:
        """Create mock Discord channel whose send returns a fresh mock message."""
        channel = Mock(spec=discord.TextChannel)
        channel.id = channel_id
        channel.send = AsyncMock(side_effect=lambda *args, **kwargs: MockDiscordObjects.create_mock_message())
        return channel

    @staticmethod
    def create_mock_message(message_id: int = 11111) -> Mock:
        """Create mock Discord message."""
        message = Mock(spec=discord.Message)
        message.id = message_id
        message.edit = AsyncMock()
        message.delete = AsyncMock()
        return message


class AsyncTestHelpers:
    """Helper functions for async testing."""

    @staticmethod
    async def run_with_timeout(coro, timeout: float = 5.0):
        """Run coroutine with timeout."""
        import asyncio
        return await asyncio.wait_for(coro, timeout=timeout)
