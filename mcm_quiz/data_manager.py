"""
Data manager for JSON question bank files and question data validation.
"""
import json
import os
import logging
import random
from typing import Any, Dict, List, Optional, Tuple
from pathlib import Path

from .models import Answer, Calculation, Category, Difficulty, Question
from .question_repository import QuestionRepository


DEFAULT_QUESTION_DIRECTORY = Path(__file__).parent / "quizzes"

ANSWERS_PER_QUESTION = 3

_CATEGORY_VALUES = {c.value for c in Category}
_DIFFICULTY_VALUES = {d.value for d in Difficulty}


class DataManager:
    """Manages loading and validation of JSON question bank files."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

    def __init__(self, question_directory: Optional[str] = None):
        """
        Initialize DataManager with the question directory path.

        Args:
            question_directory: Directory containing JSON question files,
                defaults to the bank bundled with the package
        """
        self.question_directory = Path(question_directory) if question_directory else DEFAULT_QUESTION_DIRECTORY
        self.loaded_quizzes: Dict[str, List[Question]] = {}
        self.quiz_titles: Dict[str, str] = {}
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []  # Track loading errors for user feedback

    def load_question_files(self) -> Dict[str, List[Question]]:
        """
        Load all JSON files from the question directory.

        Files that fail to load are skipped and their errors recorded in
        load_errors.

        Returns:
            Dictionary mapping quiz names (file stems) to lists of Question objects
        """
        self.loaded_quizzes.clear()
        self.quiz_titles.clear()
        self.load_errors.clear()

        if not self.question_directory.is_dir():
            error_msg = f"Question directory not found: {self.question_directory}"
            self.logger.error(error_msg)
            self.load_errors.append(error_msg)
            return self.loaded_quizzes

        try:
            json_files = sorted(self.question_directory.glob("*.json"))
        except OSError as e:
            error_msg = f"System error scanning {self.question_directory}: {e}"
            self.logger.error(error_msg)
            self.load_errors.append(error_msg)
            return self.loaded_quizzes

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.question_directory}")
            self.load_errors.append(f"No question files found in {self.question_directory}")
            return self.loaded_quizzes

        successful_loads = 0
        for json_file in json_files:
            load_result = self._load_quiz_file_safely(json_file)
            if load_result['success']:
                successful_loads += 1
            else:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        self.logger.info(f"Successfully loaded {successful_loads} of {len(json_files)} question files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_quizzes

    def _load_single_file(self, file_path: Path) -> Optional[dict]:
        """
        Load and parse a single JSON file.

        Returns:
            Parsed JSON data or None if loading or validation failed
        """
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {file_path}: {e}")
            return None
        except OSError as e:
            self.logger.error(f"Failed to read question file {file_path}: {e}")
            return None

        if not self.validate_quiz_structure(data):
            self.logger.error(f"Invalid question bank structure in {file_path}")
            return None
        return data

    def validate_quiz_structure(self, data: Any) -> bool:
        """
        Validate that JSON data has the question bank structure.

        Expected structure:
        {
            "quiz_name": str,  # Optional
            "questions": [
                {
                    "id": str,
                    "category": "mcm" | "mcd" | "mixed" | "primes" | "application",
                    "difficulty": "basic" | "intermediate" | "advanced",
                    "question": str,
                    "answers": [{"text": str, "correct": bool, "explanation": str}] * 3,
                    "keywords": [str],
                    "calculation": dict  # Optional
                }
            ]
        }

        Args:
            data: Parsed JSON data to validate

        Returns:
            True if structure is valid, False otherwise
        """
        if not isinstance(data, dict):
            self.logger.error("Question bank must be a JSON object")
            return False

        questions = data.get("questions")
        if not isinstance(questions, list):
            self.logger.error("Question bank must contain a 'questions' array")
            return False

        if not questions:
            self.logger.error("Questions array cannot be empty")
            return False

        seen_ids = set()
        for i, question_data in enumerate(questions):
            if not isinstance(question_data, dict):
                self.logger.error(f"Question {i} must be an object")
                return False

            for key in ("id", "category", "difficulty", "question"):
                if not isinstance(question_data.get(key), str):
                    self.logger.error(f"Question {i} '{key}' field must be a string")
                    return False

            question_id = question_data["id"]
            if question_id in seen_ids:
                self.logger.error(f"Question {i} has duplicate id '{question_id}'")
                return False
            seen_ids.add(question_id)

            if question_data["category"] not in _CATEGORY_VALUES:
                self.logger.error(f"Question {question_id} has unknown category '{question_data['category']}'")
                return False

            if question_data["difficulty"] not in _DIFFICULTY_VALUES:
                self.logger.error(f"Question {question_id} has unknown difficulty '{question_data['difficulty']}'")
                return False

            if not self._validate_answers(question_id, question_data.get("answers")):
                return False

            keywords = question_data.get("keywords", [])
            if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
                self.logger.error(f"Question {question_id} 'keywords' must be an array of strings")
                return False

            if "calculation" in question_data and not isinstance(question_data["calculation"], dict):
                self.logger.error(f"Question {question_id} 'calculation' must be an object")
                return False

        return True

    def _validate_answers(self, question_id: str, answers: Any) -> bool:
        if not isinstance(answers, list) or len(answers) != ANSWERS_PER_QUESTION:
            self.logger.error(f"Question {question_id} must have exactly {ANSWERS_PER_QUESTION} answers")
            return False

        for j, answer in enumerate(answers):
            if not isinstance(answer, dict):
                self.logger.error(f"Question {question_id} answer {j} must be an object")
                return False
            if not isinstance(answer.get("text"), str) or not isinstance(answer.get("explanation"), str):
                self.logger.error(f"Question {question_id} answer {j} needs 'text' and 'explanation' strings")
                return False
            if not isinstance(answer.get("correct"), bool):
                self.logger.error(f"Question {question_id} answer {j} 'correct' must be a boolean")
                return False

        correct_count = sum(1 for answer in answers if answer["correct"])
        if correct_count != 1:
            self.logger.error(f"Question {question_id} has {correct_count} correct answers, expected exactly 1")
            return False

        return True

    def _parse_questions(self, quiz_data: dict) -> List[Question]:
        """
        Parse validated question bank data into Question objects.
        """
        questions = []

        for question_data in quiz_data["questions"]:
            calculation_data = question_data.get("calculation")
            question = Question(
                id=question_data["id"],
                category=Category(question_data["category"]),
                difficulty=Difficulty(question_data["difficulty"]),
                text=question_data["question"],
                answers=tuple(
                    Answer(
                        text=a["text"],
                        correct=a["correct"],
                        explanation=a["explanation"]
                    )
                    for a in question_data["answers"]
                ),
                keywords=frozenset(question_data.get("keywords", [])),
                calculation=self._parse_calculation(calculation_data) if calculation_data else None
            )
            questions.append(question)

        return questions

    def _parse_calculation(self, data: dict) -> Calculation:
        second_step = data.get("second_step")
        return Calculation(
            operation=data["operation"],
            result=data["result"],
            numbers=tuple(data.get("numbers", ())),
            known_values=dict(data.get("known_values", {})),
            formula=data.get("formula"),
            second_step=self._parse_calculation(second_step) if second_step else None,
            special=data.get("special")
        )

    def _find_id_conflicts(self, questions: List[Question]) -> List[Tuple[str, str]]:
        """Return (id, quiz name) for each question id another loaded bank already uses."""
        owners = {
            question.id: quiz_name
            for quiz_name, loaded in self.loaded_quizzes.items()
            for question in loaded
        }
        return [(q.id, owners[q.id]) for q in questions if q.id in owners]

    def _load_quiz_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single question file with error handling.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not os.access(json_file, os.R_OK):
                return {
                    'success': False,
                    'error': "Permission denied: Cannot read file"
                }

            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                }

            quiz_data = self._load_single_file(json_file)
            if quiz_data is None:
                return {
                    'success': False,
                    'error': "Invalid JSON structure or validation failed"
                }

            try:
                questions = self._parse_questions(quiz_data)
            except (KeyError, TypeError, ValueError) as e:
                return {
                    'success': False,
                    'error': f"Invalid calculation data: {e}"
                }

            # Ids must be unique across every bank, since the repository merges them
            conflicts = self._find_id_conflicts(questions)
            if conflicts:
                return {
                    'success': False,
                    'error': "Duplicate question ids already loaded: " + ", ".join(
                        f"'{question_id}' ({owner})" for question_id, owner in conflicts
                    )
                }

            quiz_name = json_file.stem
            self.loaded_quizzes[quiz_name] = questions
            self.quiz_titles[quiz_name] = quiz_data.get("quiz_name", quiz_name)
            self.logger.info(f"Loaded question bank '{quiz_name}' with {len(questions)} questions")

            return {'success': True}

        except OSError as e:
            return {
                'success': False,
                'error': f"System error: {e}"
            }

    def get_available_quizzes(self) -> List[str]:
        return list(self.loaded_quizzes.keys())

    def get_quiz_questions(self, quiz_name: str) -> Optional[List[Question]]:
        """
        Retrieve questions for a specific question bank.

        Args:
            quiz_name: Name of the bank (file name without extension)

        Returns:
            List of Question objects, or None if the bank is not loaded
        """
        return self.loaded_quizzes.get(quiz_name)

    def quiz_exists(self, quiz_name: str) -> bool:
        return quiz_name in self.loaded_quizzes

    def get_question_count(self, quiz_name: Optional[str] = None) -> int:
        """
        Get the number of questions in one bank, or in all banks if no name is given.
        """
        if quiz_name is None:
            return sum(len(questions) for questions in self.loaded_quizzes.values())
        questions = self.get_quiz_questions(quiz_name)
        return len(questions) if questions else 0

    def get_repository(
        self,
        quiz_name: Optional[str] = None,
        rng: Optional[random.Random] = None
    ) -> QuestionRepository:
        """
        Build a question repository over the loaded questions.

        Args:
            quiz_name: Restrict the repository to one bank, or None for all banks
            rng: Random source handed to the repository

        Returns:
            QuestionRepository (empty if the bank is unknown)
        """
        if quiz_name is not None:
            return QuestionRepository(self.loaded_quizzes.get(quiz_name, []), rng=rng)

        all_questions: List[Question] = []
        for questions in self.loaded_quizzes.values():
            all_questions.extend(questions)
        return QuestionRepository(all_questions, rng=rng)

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the last loading operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_quizzes': len(self.loaded_quizzes),
            'total_questions': self.get_question_count(),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'question_directory': str(self.question_directory),
            'available_quizzes': list(self.loaded_quizzes.keys())
        }
