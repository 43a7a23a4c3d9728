import discord
from discord import app_commands
from discord.ext import commands
import logging
import asyncio
import re
from typing import Awaitable, Callable, List, Optional
import os

from .data_manager import DataManager
from .config_manager import ConfigManager
from .math_utils import (
    InconsistentFormulaError,
    find_missing,
    gcd,
    lcm,
    minutes_to_display,
    prime_factorization,
    validate_positive_integers,
)
from .models import Category
from .presenter import CATEGORY_LABELS, ChannelPresenter, format_factorization
from .quiz_controller import QuizController, SessionNotFoundError

logger = logging.getLogger(__name__)

CATEGORY_CHOICES = [
    app_commands.Choice(name=label, value=category.value)
    for category, label in CATEGORY_LABELS.items()
]

MAX_CALCULATOR_NUMBERS = 10
MAX_CALCULATOR_VALUE = 10 ** 9
SEARCH_RESULT_LIMIT = 10


def parse_numbers(text: str) -> List[int]:
    """
    Parse a list of positive integers separated by spaces or commas.

    Raises:
        ValueError: If the text holds anything but positive integers, or
            fewer than two or more than MAX_CALCULATOR_NUMBERS of them
    """
    tokens = [token for token in re.split(r"[\s,;]+", text.strip()) if token]
    if not all(token.isdigit() for token in tokens):
        raise ValueError(f"Not a list of positive integers: {text!r}")

    numbers = [int(token) for token in tokens]
    if len(numbers) < 2:
        raise ValueError("At least two numbers are required")
    if len(numbers) > MAX_CALCULATOR_NUMBERS:
        raise ValueError(f"At most {MAX_CALCULATOR_NUMBERS} numbers are allowed")
    if not validate_positive_integers(*numbers) or max(numbers) > MAX_CALCULATOR_VALUE:
        raise ValueError(f"Numbers must be between 1 and {MAX_CALCULATOR_VALUE}")
    return numbers


class QuizBot(commands.Bot):
    """Discord bot running MCM/MCD quizzes and number-theory helpers"""

    def __init__(self, config=None):
        # Slash commands and buttons only need the guilds intent
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.data_manager: Optional[DataManager] = None
        self.config_manager: Optional[ConfigManager] = None
        self.quiz_controller: Optional[QuizController] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            if self.app_config:
                await self.apply_configuration()

            self.data_manager = DataManager(self.config_manager.get_question_directory())
            await self.load_quiz_data()

            self.quiz_controller = QuizController(self.data_manager, self.config_manager)

            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def apply_configuration(self):
        """Apply settings from the configuration file to the config manager."""
        result = self.config_manager.apply_config(self.app_config)
        if not result['success']:
            # Invalid values keep their defaults
            for rejected in result['rejected']:
                logger.warning(f"Config value ignored: {rejected}")

    async def load_quiz_data(self):
        """Load the question bank"""
        loaded = self.data_manager.load_question_files()
        summary = self.data_manager.get_loading_summary()
        logger.info(
            f"Loaded {len(loaded)} question files ({summary['total_questions']} questions) "
            f"from {summary['question_directory']}"
        )
        for error in summary['errors']:
            logger.warning(f"Question bank problem: {error}")

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Muestra los comandos disponibles")
        async def help_command(interaction: discord.Interaction):
            await self.run_with_retry("help", interaction, lambda: self.handle_help(interaction))

        # Quiz control
        @self.tree.command(name="start", description="Empieza un quiz en este canal")
        @app_commands.describe(categoria="Limita el quiz a un tema")
        @app_commands.choices(categoria=CATEGORY_CHOICES)
        async def start_command(interaction: discord.Interaction, categoria: Optional[app_commands.Choice[str]] = None):
            category = Category(categoria.value) if categoria else None
            await self.run_with_retry("start", interaction, lambda: self.handle_start(interaction, category), max_retries=1)

        @self.tree.command(name="stop", description="Termina el quiz de este canal")
        async def stop_command(interaction: discord.Interaction):
            await self.run_with_retry("stop", interaction, lambda: self.handle_stop(interaction), max_retries=1)

        @self.tree.command(name="pause", description="Pausa o reanuda el temporizador de la pregunta")
        async def pause_command(interaction: discord.Interaction):
            await self.run_with_retry("pause", interaction, lambda: self.handle_pause(interaction), max_retries=1)

        @self.tree.command(name="status", description="Muestra el progreso del quiz de este canal")
        async def status_command(interaction: discord.Interaction):
            await self.run_with_retry("status", interaction, lambda: self.handle_status(interaction))

        # Configuration
        @self.tree.command(name="set_questions", description="Número de preguntas del próximo quiz (1-100)")
        @app_commands.describe(numero="Cantidad de preguntas")
        async def set_questions_command(interaction: discord.Interaction, numero: int):
            await self.run_with_retry("set_questions", interaction, lambda: self.handle_set_questions(interaction, numero))

        @self.tree.command(name="random_order", description="Alterna entre orden aleatorio y secuencial")
        async def random_order_command(interaction: discord.Interaction):
            await self.run_with_retry("random_order", interaction, lambda: self.handle_random_order(interaction), max_retries=1)

        @self.tree.command(name="set_timer", description="Segundos por pregunta (5-300)")
        @app_commands.describe(segundos="Tiempo por pregunta")
        async def set_timer_command(interaction: discord.Interaction, segundos: int):
            await self.run_with_retry("set_timer", interaction, lambda: self.handle_set_timer(interaction, segundos))

        # Question bank and calculators
        @self.tree.command(name="buscar", description="Busca preguntas por palabra clave")
        @app_commands.describe(palabra="Palabra a buscar")
        async def search_command(interaction: discord.Interaction, palabra: str):
            await self.run_with_retry("buscar", interaction, lambda: self.handle_search(interaction, palabra))

        @self.tree.command(name="mcd", description="Máximo común divisor de varios números")
        @app_commands.describe(numeros="Números separados por espacios, p. ej. 48 72")
        async def gcd_command(interaction: discord.Interaction, numeros: str):
            await self.run_with_retry("mcd", interaction, lambda: self.handle_gcd_lcm(interaction, numeros, "mcd"))

        @self.tree.command(name="mcm", description="Mínimo común múltiplo de varios números")
        @app_commands.describe(numeros="Números separados por espacios, p. ej. 12 18")
        async def lcm_command(interaction: discord.Interaction, numeros: str):
            await self.run_with_retry("mcm", interaction, lambda: self.handle_gcd_lcm(interaction, numeros, "mcm"))

        @self.tree.command(name="factores", description="Descomposición en factores primos")
        @app_commands.describe(numero="Número a descomponer")
        async def factors_command(interaction: discord.Interaction, numero: int):
            await self.run_with_retry("factores", interaction, lambda: self.handle_factors(interaction, numero))

        @self.tree.command(name="formula", description="Fórmula mágica: encuentra el número que falta (a × b = mcd × mcm)")
        @app_commands.describe(conocido="El número que conoces", mcd="MCD de los dos números", mcm="MCM de los dos números")
        async def formula_command(interaction: discord.Interaction, conocido: int, mcd: int, mcm: int):
            await self.run_with_retry("formula", interaction, lambda: self.handle_formula(interaction, conocido, mcd, mcm))

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            stopped = self.quiz_controller.stop_all()
            if stopped:
                logger.info(f"Stopped {len(stopped)} quiz sessions on shutdown")
        await super().close()

    # Error handling

    async def run_with_retry(
        self,
        operation: str,
        interaction: discord.Interaction,
        handler: Callable[[], Awaitable[None]],
        max_retries: int = 3
    ) -> None:
        """
        Run a command handler, retrying on transient Discord API failures.

        Handlers that change state should use max_retries=1.
        """
        for attempt in range(max_retries):
            try:
                await handler()
                return

            except discord.HTTPException as e:
                if await self.handle_discord_api_error(e, operation, interaction) and attempt < max_retries - 1:
                    continue
                return

            except Exception as e:
                logger.error(f"Error in {operation} command (attempt {attempt + 1}): {e}", exc_info=True)
                await self.send_error_response(interaction, "No se pudo completar el comando", "❌ Error")
                return

    async def handle_discord_api_error(self, error: Exception, operation: str, interaction: discord.Interaction = None) -> bool:
        """
        Handle Discord API errors.

        Returns:
            True if the operation should be retried, False otherwise
        """
        if isinstance(error, discord.HTTPException):
            if error.status == 429:
                retry_after = getattr(error, 'retry_after', 5)
                logger.warning(f"Rate limited during {operation}, waiting {retry_after}s")
                await asyncio.sleep(retry_after)
                return True

            elif error.status in [500, 502, 503, 504]:
                logger.warning(f"Discord server error during {operation}: {error.status}")
                await asyncio.sleep(2)
                return True

            elif error.status == 403:
                logger.error(f"Permission denied during {operation}: {error}")
                if interaction:
                    await self.send_error_response(
                        interaction,
                        "El bot no tiene permisos para esta acción. Revisa los permisos del canal.",
                        "❌ Sin permisos"
                    )
                return False

            else:
                logger.error(f"Discord API error during {operation}: {error}")
                if interaction:
                    await self.send_error_response(
                        interaction,
                        "Error de Discord. Inténtalo de nuevo en un momento.",
                        "❌ Error de Discord"
                    )
                return False

        logger.error(f"Unexpected error during {operation}: {error}")
        return False

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send error response to user with fallback handling"""
        embed = discord.Embed(
            title=title,
            description=message,
            color=0xff0000
        )
        embed.set_footer(text="Usa /help para ver los comandos disponibles")

        try:
            await self._respond(interaction, embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send error embed: {e}")
            try:
                await self._respond(interaction, content=f"{title}: {message}", ephemeral=True)
            except discord.HTTPException:
                logger.error("Failed to send fallback error message")

    async def _respond(self, interaction: discord.Interaction, **kwargs):
        if interaction.response.is_done():
            await interaction.followup.send(**kwargs)
        else:
            await interaction.response.send_message(**kwargs)

    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        help_embed = discord.Embed(
            title="🎯 Quiz de MCM y MCD",
            description="Practica el mínimo común múltiplo, el máximo común divisor y los números primos",
            color=0x00ff00
        )

        help_embed.add_field(
            name="🎮 Quiz",
            value=(
                "`/start [categoria]` - Empieza un quiz en este canal\n"
                "`/pause` - Pausa o reanuda el temporizador\n"
                "`/stop` - Termina el quiz y muestra los resultados\n"
                "`/status` - Progreso del quiz actual"
            ),
            inline=False
        )
        help_embed.add_field(
            name="📋 Configuración",
            value=(
                "`/set_questions <numero>` - Preguntas por quiz (1-100)\n"
                "`/set_timer <segundos>` - Tiempo por pregunta (5-300)\n"
                "`/random_order` - Alterna orden aleatorio/secuencial"
            ),
            inline=False
        )
        help_embed.add_field(
            name="🧮 Herramientas",
            value=(
                "`/mcd <numeros>` - Máximo común divisor\n"
                "`/mcm <numeros>` - Mínimo común múltiplo\n"
                "`/factores <numero>` - Factores primos\n"
                "`/formula <conocido> <mcd> <mcm>` - Número que falta\n"
                "`/buscar <palabra>` - Busca preguntas"
            ),
            inline=False
        )
        help_embed.add_field(
            name="⚙️ Configuración actual",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )

        summary = self.data_manager.get_loading_summary()
        if summary['total_questions']:
            categories = self.data_manager.get_repository().categories()
            help_embed.add_field(
                name="📚 Banco de preguntas",
                value=(
                    f"{summary['total_questions']} preguntas · "
                    + ", ".join(CATEGORY_LABELS[c] for c in categories)
                ),
                inline=False
            )
        else:
            help_embed.add_field(
                name="📚 Banco de preguntas",
                value="No se cargó ninguna pregunta. Revisa los registros del bot.",
                inline=False
            )

        help_embed.set_footer(text="Responde con los botones y pulsa «Siguiente» para avanzar")
        await interaction.response.send_message(embed=help_embed)

    async def handle_start(self, interaction: discord.Interaction, category: Optional[Category] = None):
        """Handle /start command"""
        channel_id = interaction.channel_id
        presenter = ChannelPresenter(
            interaction.channel,
            self.quiz_controller,
            channel_id,
            owner_id=interaction.user.id
        )

        result = self.quiz_controller.start_quiz(channel_id, presenter.listeners(), category)

        if not result['success']:
            presenter.close()
            embed = discord.Embed(
                title="❌ No se pudo empezar el quiz",
                description=result.get('user_message', result['message']),
                color=0xff0000
            )
            session_info = result.get('session_info')
            if session_info:
                embed.add_field(
                    name="Quiz en curso",
                    value=f"Pregunta {session_info['current_question']}/{session_info['total_questions']}",
                    inline=False
                )
            await interaction.response.send_message(embed=embed, ephemeral=True)
            return

        session_info = result['session_info']
        settings = session_info['settings']
        embed = discord.Embed(
            title="🎯 ¡Empieza el quiz!",
            description=f"Tema: **{CATEGORY_LABELS[category] if category else 'Todos'}**",
            color=0x00ff00
        )
        embed.add_field(
            name="📊 Detalles",
            value=(
                f"Preguntas: {session_info['total_questions']}\n"
                f"Orden: {'🔀 Aleatorio' if settings['random_order'] else '📋 Secuencial'}\n"
                f"Tiempo: {settings['time_limit']} segundos por pregunta"
            ),
            inline=False
        )
        embed.set_footer(text="Usa /pause para pausar el tiempo o /stop para terminar")

        try:
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException:
            # Nothing was shown in the channel, so leave it free for the next /start
            presenter.close()
            self.quiz_controller.stop_quiz(channel_id)
            logger.warning(f"Start message failed in channel {channel_id}, quiz discarded")
            raise
        presenter.start()

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        result = self.quiz_controller.stop_quiz(interaction.channel_id)

        if result['success']:
            session_info = result['session_info']
            embed = discord.Embed(
                title="🛑 Quiz detenido",
                description=(
                    f"Se detuvo en la pregunta {session_info['current_question']}/{session_info['total_questions']}. "
                    "Los resultados aparecerán en el canal."
                ),
                color=0xff6600
            )
            await interaction.response.send_message(embed=embed)
        else:
            await self._send_no_quiz(interaction)

    async def handle_pause(self, interaction: discord.Interaction):
        """Handle /pause command"""
        try:
            running = self.quiz_controller.toggle_timer(interaction.channel_id)
        except SessionNotFoundError:
            await self._send_no_quiz(interaction)
            return

        if running:
            embed = discord.Embed(
                title="▶️ Temporizador reanudado",
                description="El tiempo vuelve a correr.",
                color=0x00ff00
            )
        else:
            embed = discord.Embed(
                title="⏸️ Temporizador en pausa",
                description="Usa /pause otra vez para reanudar.",
                color=0xffaa00
            )
        await interaction.response.send_message(embed=embed)

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        session_info = self.quiz_controller.get_session_progress(interaction.channel_id)
        if session_info is None:
            await self._send_no_quiz(interaction)
            return

        if session_info['timer_running']:
            status_emoji, status_text, status_color = "▶️", "En curso", 0x00ff00
        else:
            status_emoji, status_text, status_color = "⏸️", "Temporizador detenido", 0xffaa00

        embed = discord.Embed(
            title=f"{status_emoji} Estado del quiz - {status_text}",
            color=status_color
        )
        embed.add_field(
            name="📊 Progreso",
            value=(
                f"Pregunta: {session_info['current_question']}/{session_info['total_questions']}\n"
                f"Completado: {int(session_info['progress'])}%\n"
                f"Puntuación: {session_info['score']}"
            ),
            inline=True
        )
        embed.add_field(
            name="⏱️ Tiempo",
            value=(
                f"Restante: {session_info['time_remaining']}s\n"
                f"Límite: {session_info['settings']['time_limit']}s por pregunta"
            ),
            inline=True
        )
        embed.set_footer(text="Usa /help para ver todos los comandos")
        await interaction.response.send_message(embed=embed)

    async def _send_no_quiz(self, interaction: discord.Interaction):
        embed = discord.Embed(
            title="ℹ️ No hay quiz activo",
            description="No hay ningún quiz en curso en este canal.",
            color=0x6699ff
        )
        embed.add_field(name="🎯 Empezar", value="Usa `/start` para empezar uno", inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_set_questions(self, interaction: discord.Interaction, number: int):
        """Handle /set_questions command"""
        result = self.config_manager.set_question_count(number)
        if not result['success']:
            await interaction.response.send_message(result['user_message'], ephemeral=True)
            return

        embed = discord.Embed(
            title="✅ Número de preguntas actualizado",
            description=f"El próximo quiz tendrá hasta **{number}** preguntas",
            color=0x00ff00
        )
        available = self.data_manager.get_question_count()
        if number > available:
            embed.add_field(
                name="⚠️ Banco limitado",
                value=f"Solo hay {available} preguntas; se usarán todas.",
                inline=False
            )
        await interaction.response.send_message(embed=embed)

    async def handle_random_order(self, interaction: discord.Interaction):
        """Handle /random_order command"""
        result = self.config_manager.toggle_random_order()
        if not result['success']:
            await interaction.response.send_message(result['user_message'], ephemeral=True)
            return

        new_value = result['new_value']
        embed = discord.Embed(
            title="🔀 Orden aleatorio" if new_value else "📋 Orden secuencial",
            description=(
                "Las preguntas se barajarán antes de cada quiz"
                if new_value else
                "Las preguntas saldrán en el orden del banco"
            ),
            color=0x00ff00 if new_value else 0x0099ff
        )
        await interaction.response.send_message(embed=embed)

    async def handle_set_timer(self, interaction: discord.Interaction, seconds: int):
        """Handle /set_timer command"""
        result = self.config_manager.set_time_limit(seconds)
        if not result['success']:
            await interaction.response.send_message(result['user_message'], ephemeral=True)
            return

        embed = discord.Embed(
            title="✅ Tiempo actualizado",
            description=f"Cada pregunta tendrá **{seconds} segundos**",
            color=0x00ff00
        )
        total_minutes = seconds * self.config_manager.get_question_count() // 60
        if total_minutes >= 1:
            embed.add_field(
                name="🕐 Duración máxima del quiz",
                value=minutes_to_display(total_minutes),
                inline=False
            )
        await interaction.response.send_message(embed=embed)

    async def handle_search(self, interaction: discord.Interaction, keyword: str):
        """Handle /buscar command"""
        matches = self.data_manager.get_repository().search(keyword)

        if not matches:
            await interaction.response.send_message(f"🔍 No hay preguntas con «{keyword}».", ephemeral=True)
            return

        lines = []
        for question in matches[:SEARCH_RESULT_LIMIT]:
            text = question.text if len(question.text) <= 90 else question.text[:89] + "…"
            lines.append(f"**{question.id}** ({CATEGORY_LABELS[question.category]}): {text}")
        if len(matches) > SEARCH_RESULT_LIMIT:
            lines.append(f"... y {len(matches) - SEARCH_RESULT_LIMIT} más")

        embed = discord.Embed(
            title=f"🔍 {len(matches)} preguntas con «{keyword}»",
            description="\n".join(lines),
            color=0x6699ff
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_gcd_lcm(self, interaction: discord.Interaction, text: str, operation: str):
        """Handle /mcd and /mcm commands"""
        try:
            numbers = parse_numbers(text)
        except ValueError as e:
            logger.debug(f"Rejected {operation} input {text!r}: {e}")
            await interaction.response.send_message(
                f"❌ Escribe entre 2 y {MAX_CALCULATOR_NUMBERS} números enteros positivos, p. ej. `48 72`",
                ephemeral=True
            )
            return

        result = gcd(*numbers) if operation == "mcd" else lcm(*numbers)
        # Trial division runs in a worker thread, off the event loop
        factorizations = await asyncio.get_running_loop().run_in_executor(
            None, lambda: [prime_factorization(n) for n in numbers]
        )
        embed = discord.Embed(
            title=f"🧮 {operation}({', '.join(map(str, numbers))}) = {result}",
            color=0x9b59b6 if operation == "mcd" else 0x3498db
        )
        embed.add_field(
            name="Factores primos",
            value="\n".join(
                f"{n} = {format_factorization(factors)}" for n, factors in zip(numbers, factorizations)
            ),
            inline=False
        )
        if len(numbers) == 2:
            a, b = numbers
            divisor, multiple = gcd(a, b), lcm(a, b)
            embed.add_field(
                name="✨ Fórmula mágica",
                value=f"{a} × {b} = {a * b} = {divisor} × {multiple}",
                inline=False
            )
        await interaction.response.send_message(embed=embed)

    async def handle_factors(self, interaction: discord.Interaction, number: int):
        """Handle /factores command"""
        if not validate_positive_integers(number) or number < 2 or number > MAX_CALCULATOR_VALUE:
            await interaction.response.send_message(
                f"❌ El número debe estar entre 2 y {MAX_CALCULATOR_VALUE}", ephemeral=True
            )
            return

        factors = await asyncio.get_running_loop().run_in_executor(None, prime_factorization, number)
        embed = discord.Embed(
            title=f"🧮 {number} = {format_factorization(factors)}",
            description="🔢 Es un número primo" if factors == {number: 1} else None,
            color=0x1abc9c
        )
        await interaction.response.send_message(embed=embed)

    async def handle_formula(self, interaction: discord.Interaction, known: int, gcd_value: int, lcm_value: int):
        """Handle /formula command"""
        if not validate_positive_integers(known, gcd_value, lcm_value):
            await interaction.response.send_message("❌ Los tres valores deben ser enteros positivos", ephemeral=True)
            return

        try:
            missing = find_missing(known, gcd_value, lcm_value)
        except InconsistentFormulaError:
            await interaction.response.send_message(
                f"❌ {gcd_value} × {lcm_value} no es divisible entre {known}: esos valores no son coherentes",
                ephemeral=True
            )
            return

        embed = discord.Embed(
            title=f"✨ El otro número es {missing}",
            description=(
                f"a × b = mcd × mcm\n"
                f"{known} × b = {gcd_value} × {lcm_value} = {gcd_value * lcm_value}\n"
                f"b = {gcd_value * lcm_value} ÷ {known} = {missing}"
            ),
            color=0xf1c40f
        )
        await interaction.response.send_message(embed=embed)


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting MCM/MCD Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
