"""
Discord rendering of quiz session events.

A ChannelPresenter subscribes to one session, turns each synchronous event
into a Discord send or edit and runs those in order on a single worker task.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import discord

from .models import (
    AnswerSelected,
    Calculation,
    Category,
    Difficulty,
    NO_SELECTION,
    QuestionChanged,
    QuizEvent,
    QuizStatistics,
    ScoreUpdated,
    TimeUpdated,
)
from .quiz_controller import QuizController, SessionNotFoundError

logger = logging.getLogger(__name__)

ANSWER_LETTERS = "ABCDEFGH"
BUTTON_LABEL_LIMIT = 80

# Seconds between countdown edits of the question message
TIME_EDIT_INTERVAL = 5

CATEGORY_LABELS = {
    Category.LCM: "MCM",
    Category.GCD: "MCD",
    Category.MIXED: "Mixto",
    Category.PRIMES: "Números primos",
    Category.APPLICATION: "Aplicación",
}

CATEGORY_COLORS = {
    Category.LCM: 0x3498db,
    Category.GCD: 0x9b59b6,
    Category.MIXED: 0xe67e22,
    Category.PRIMES: 0x1abc9c,
    Category.APPLICATION: 0xf1c40f,
}

DIFFICULTY_LABELS = {
    Difficulty.BASIC: "Básico",
    Difficulty.INTERMEDIATE: "Intermedio",
    Difficulty.ADVANCED: "Avanzado",
}

SUPERSCRIPTS = str.maketrans("0123456789", "⁰¹²³⁴⁵⁶⁷⁸⁹")


def format_factorization(factors: Dict[int, int]) -> str:
    """Render {2: 3, 3: 2} as '2³ × 3²'."""
    if not factors:
        return "1"
    parts = []
    for prime in sorted(factors):
        exponent = factors[prime]
        parts.append(str(prime) if exponent == 1 else f"{prime}{str(exponent).translate(SUPERSCRIPTS)}")
    return " × ".join(parts)


def describe_calculation(calculation: Calculation) -> str:
    """Human-readable worked solution for a question's calculation."""
    operation = calculation.operation
    numbers = ", ".join(str(n) for n in calculation.numbers)

    if operation in ('mcm', 'mcd'):
        line = f"{operation}({numbers}) = {calculation.result}"
    elif operation == 'division' and len(calculation.numbers) == 2:
        dividend, divisor = calculation.numbers
        line = f"{dividend} ÷ {divisor} = {calculation.result}"
    elif operation == 'find_missing':
        known = ", ".join(f"{key} = {value}" for key, value in calculation.known_values.items())
        formula = calculation.formula or "a × b = mcd × mcm"
        line = f"{formula}  ({known})  →  b = {calculation.result}"
    else:
        line = f"{operation}: {calculation.result}"

    if calculation.second_step is not None:
        line += "\n" + describe_calculation(calculation.second_step)
    return line


def format_time_bar(seconds_remaining: int, seconds_limit: int, width: int = 10) -> str:
    """Progress bar of the remaining time, e.g. '▰▰▰▰▰▱▱▱▱▱'."""
    if seconds_limit <= 0:
        filled = 0
    else:
        filled = round(width * max(seconds_remaining, 0) / seconds_limit)
    filled = min(filled, width)
    return "▰" * filled + "▱" * (width - filled)


def _button_label(index: int, text: str) -> str:
    label = f"{ANSWER_LETTERS[index]}) {text}"
    if len(label) > BUTTON_LABEL_LIMIT:
        label = label[:BUTTON_LABEL_LIMIT - 1] + "…"
    return label


def build_question_embed(payload: QuestionChanged, score: int, seconds_remaining: int, seconds_limit: int) -> discord.Embed:
    """Embed for the question being asked, including the countdown."""
    question = payload.question
    if seconds_remaining > 10:
        timer_emoji = "⏱️"
    elif seconds_remaining > 3:
        timer_emoji = "⚠️"
    else:
        timer_emoji = "🚨"

    embed = discord.Embed(
        title=f"🎯 Pregunta {payload.index + 1}/{payload.total}",
        description=question.text,
        color=CATEGORY_COLORS.get(question.category, 0x00ff00)
    )
    embed.add_field(
        name="📚 Tema",
        value=f"{CATEGORY_LABELS[question.category]} · {DIFFICULTY_LABELS[question.difficulty]}",
        inline=True
    )
    embed.add_field(
        name=f"{timer_emoji} Tiempo",
        value=f"{seconds_remaining}s {format_time_bar(seconds_remaining, seconds_limit)}",
        inline=True
    )
    embed.add_field(
        name="🏆 Puntuación",
        value=str(score),
        inline=True
    )
    embed.set_footer(text="Elige una respuesta con los botones")
    return embed


def build_feedback_embed(payload: AnswerSelected, points_awarded: int, total_score: int) -> discord.Embed:
    """Embed revealing whether the answer was right, with the explanation."""
    if payload.selected_answer is None:
        title, color = "⏰ ¡Tiempo agotado!", 0xff6600
    elif payload.is_correct:
        title, color = "✅ ¡Correcto!", 0x00ff00
    else:
        title, color = "❌ Incorrecto", 0xff0000

    embed = discord.Embed(title=title, description=payload.explanation, color=color)

    question = payload.question
    correct_index = question.correct_index
    if not payload.is_correct and correct_index is not None:
        correct = question.answers[correct_index]
        embed.add_field(
            name="✔️ Respuesta correcta",
            value=f"{ANSWER_LETTERS[correct_index]}) {correct.text}\n{correct.explanation}",
            inline=False
        )

    if question.calculation is not None:
        embed.add_field(
            name="🧮 Cálculo",
            value=f"```\n{describe_calculation(question.calculation)}\n```",
            inline=False
        )

    if points_awarded:
        embed.add_field(name="➕ Puntos", value=f"+{points_awarded}", inline=True)
    embed.add_field(name="🏆 Total", value=str(total_score), inline=True)
    return embed


def build_results_embed(statistics: QuizStatistics) -> discord.Embed:
    """Final summary sent when the quiz completes."""
    achievements = statistics.achievements
    embed = discord.Embed(
        title="🎉 ¡Quiz completado!",
        description=f"Puntuación final: **{statistics.final_score}**",
        color=0xffd700 if achievements.perfect_score else 0x00ff00
    )
    embed.add_field(
        name="📊 Resultados",
        value=(
            f"Correctas: {statistics.correct_answers}/{statistics.total_questions}\n"
            f"Incorrectas: {statistics.incorrect_answers}\n"
            f"Precisión: {statistics.accuracy_percent}%\n"
            f"Tiempo medio: {statistics.average_time_per_question}s por pregunta"
        ),
        inline=False
    )

    lines = [
        f"MCM acertados: {achievements.lcm_correct}",
        f"MCD acertados: {achievements.gcd_correct}",
        f"Racha final: {achievements.correct_streak}",
    ]
    if achievements.perfect_score:
        lines.append("🏆 ¡Puntuación perfecta!")
    embed.add_field(name="🏅 Logros", value="\n".join(lines), inline=False)

    embed.set_footer(text="Usa /start para jugar otra vez")
    return embed


async def send_ephemeral(interaction: discord.Interaction, message: str) -> None:
    """Reply privately, whether or not the interaction was already acknowledged."""
    try:
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)
    except discord.HTTPException as e:
        logger.error(f"Failed to send ephemeral message: {e}")


class AnswerView(discord.ui.View):
    """One button per answer. Once revealed, the buttons show the outcome and are disabled."""

    def __init__(
        self,
        presenter: "ChannelPresenter",
        payload: QuestionChanged,
        revealed: bool = False,
        selected_index: Optional[int] = None
    ):
        super().__init__(timeout=None)
        self.presenter = presenter
        self.question_index = payload.index

        for index, answer in enumerate(payload.question.answers):
            if not revealed:
                style = discord.ButtonStyle.primary
            elif answer.correct:
                style = discord.ButtonStyle.success
            elif index == selected_index:
                style = discord.ButtonStyle.danger
            else:
                style = discord.ButtonStyle.secondary

            button = discord.ui.Button(
                label=_button_label(index, answer.text),
                style=style,
                disabled=revealed,
                row=index
            )
            button.callback = self._make_callback(index)
            self.add_item(button)

    def _make_callback(self, answer_index: int) -> Callable[[discord.Interaction], Awaitable[None]]:
        async def callback(interaction: discord.Interaction) -> None:
            await self.presenter.handle_answer(interaction, self.question_index, answer_index)
        return callback


class NextView(discord.ui.View):
    """The single button that moves the quiz on after feedback."""

    def __init__(self, presenter: "ChannelPresenter", question_index: int, is_last: bool):
        super().__init__(timeout=None)
        self.presenter = presenter
        self.question_index = question_index

        button = discord.ui.Button(
            label="Ver resultados 🏁" if is_last else "Siguiente ➡️",
            style=discord.ButtonStyle.success
        )
        button.callback = self._on_next
        self.add_item(button)

    async def _on_next(self, interaction: discord.Interaction) -> None:
        await self.presenter.handle_next(interaction, self.question_index)


class ChannelPresenter:
    """
    Renders one channel's quiz session.

    Session events arrive synchronously on the event loop; each one queues a
    rendering job, and a single worker task runs the jobs in arrival order so
    Discord messages never overtake each other.
    """

    def __init__(
        self,
        channel: Any,
        controller: QuizController,
        channel_id: int,
        owner_id: Optional[int] = None
    ):
        """
        Args:
            channel: Discord channel (anything with an async ``send``)
            controller: Controller that owns the session
            channel_id: Channel identifier used by the controller
            owner_id: Only this user may press the buttons, anyone if None
        """
        self.channel = channel
        self.controller = controller
        self.channel_id = channel_id
        self.owner_id = owner_id

        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

        self._current: Optional[QuestionChanged] = None
        self._question_message: Optional[discord.Message] = None
        self._feedback_message: Optional[discord.Message] = None
        self._score = 0
        self._points_awarded = 0
        self._seconds_limit = 0

    def listeners(self) -> Dict[QuizEvent, Callable[[Any], None]]:
        return {
            QuizEvent.QUESTION_CHANGED: self.on_question_changed,
            QuizEvent.SCORE_UPDATED: self.on_score_updated,
            QuizEvent.TIME_UPDATED: self.on_time_updated,
            QuizEvent.ANSWER_SELECTED: self.on_answer_selected,
            QuizEvent.QUIZ_COMPLETE: self.on_quiz_complete,
        }

    # Worker

    def start(self) -> None:
        """Start rendering queued jobs. Must be called from the event loop."""
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(self._run())

    def _enqueue(self, job: Callable[[], Awaitable[None]]) -> None:
        if self._closed:
            logger.debug(f"Presenter for channel {self.channel_id} closed, dropping render job")
            return
        self._queue.put_nowait(job)

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    break
                await job()
            except discord.HTTPException as e:
                logger.error(f"Discord HTTP error rendering quiz in channel {self.channel_id}: {e}")
            except Exception as e:
                logger.error(f"Unexpected error rendering quiz in channel {self.channel_id}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued job has run."""
        await self._queue.join()

    async def wait_closed(self) -> None:
        if self._worker is not None:
            await self._worker

    def close(self) -> None:
        if not self._closed:
            self._queue.put_nowait(None)
            self._closed = True

    # Session event handlers

    def on_question_changed(self, payload: QuestionChanged) -> None:
        self._current = payload
        session = self.controller.get_session(self.channel_id)
        self._seconds_limit = session.time_limit if session is not None else 0
        seconds_limit = self._seconds_limit
        self._enqueue(lambda: self._send_question(payload, seconds_limit))

    def on_score_updated(self, payload: ScoreUpdated) -> None:
        self._score = payload.new_total_score
        self._points_awarded = payload.points_awarded

    def on_time_updated(self, payload: TimeUpdated) -> None:
        remaining = payload.seconds_remaining
        if remaining <= 0 or remaining % TIME_EDIT_INTERVAL != 0:
            return
        current = self._current
        self._enqueue(lambda: self._edit_question(current, remaining, payload.seconds_limit))

    def on_answer_selected(self, payload: AnswerSelected) -> None:
        points = self._points_awarded
        self._points_awarded = 0
        score = self._score
        current = self._current
        self._enqueue(lambda: self._reveal(current, payload, points, score))

    def on_quiz_complete(self, statistics: QuizStatistics) -> None:
        self._enqueue(self._retire_feedback)
        self._enqueue(lambda: self.channel.send(embed=build_results_embed(statistics)))
        self.close()

    # Rendering jobs

    async def _send_question(self, payload: QuestionChanged, seconds_limit: int) -> None:
        await self._retire_feedback()
        embed = build_question_embed(payload, self._score, seconds_limit, seconds_limit)
        self._question_message = await self.channel.send(embed=embed, view=AnswerView(self, payload))
        logger.debug(f"Question {payload.question.id} sent to channel {self.channel_id}")

    async def _edit_question(self, payload: Optional[QuestionChanged], seconds_remaining: int, seconds_limit: int) -> None:
        # The question may have moved on while the edit was queued
        if payload is None or payload is not self._current or self._question_message is None:
            return
        embed = build_question_embed(payload, self._score, seconds_remaining, seconds_limit)
        await self._question_message.edit(embed=embed)

    async def _reveal(self, payload: Optional[QuestionChanged], answer: AnswerSelected, points: int, score: int) -> None:
        if payload is not None and self._question_message is not None:
            selected_index = None if answer.selected_index == NO_SELECTION else answer.selected_index
            await self._question_message.edit(
                view=AnswerView(self, payload, revealed=True, selected_index=selected_index)
            )

        is_last = payload is not None and payload.index + 1 >= payload.total
        question_index = payload.index if payload is not None else 0
        self._feedback_message = await self.channel.send(
            embed=build_feedback_embed(answer, points, score),
            view=NextView(self, question_index, is_last)
        )

    async def _retire_feedback(self) -> None:
        message, self._feedback_message = self._feedback_message, None
        if message is not None:
            await message.edit(view=None)

    # Button handlers

    async def _check_owner(self, interaction: discord.Interaction) -> bool:
        if self.owner_id is not None and interaction.user.id != self.owner_id:
            await send_ephemeral(interaction, "🔒 Solo quien inició este quiz puede responder.")
            return False
        return True

    def _is_current(self, question_index: int) -> bool:
        session = self.controller.get_session(self.channel_id)
        return session is not None and session.current_index == question_index

    async def handle_answer(self, interaction: discord.Interaction, question_index: int, answer_index: int) -> None:
        if not await self._check_owner(interaction):
            return
        if not self._is_current(question_index):
            await send_ephemeral(interaction, "ℹ️ Esta pregunta ya no está activa.")
            return

        try:
            recorded = self.controller.answer(self.channel_id, answer_index)
        except SessionNotFoundError:
            await send_ephemeral(interaction, "ℹ️ Este quiz ya terminó. Usa /start para empezar otro.")
            return

        if recorded:
            await interaction.response.defer()
        else:
            await send_ephemeral(interaction, "ℹ️ Esta pregunta ya tiene respuesta. Pulsa «Siguiente».")

    async def handle_next(self, interaction: discord.Interaction, question_index: int) -> None:
        if not await self._check_owner(interaction):
            return
        if not self._is_current(question_index):
            await send_ephemeral(interaction, "ℹ️ El quiz ya avanzó.")
            return

        try:
            self.controller.advance(self.channel_id)
        except SessionNotFoundError:
            await send_ephemeral(interaction, "ℹ️ Este quiz ya terminó. Usa /start para empezar otro.")
            return
        await interaction.response.defer()
