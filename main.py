#!/usr/bin/env python3
"""
MCM/MCD Quiz Bot - Main Entry Point

Runs the Discord bot that quizzes players on least common multiples,
greatest common divisors and prime numbers.

Usage:
    python main.py [path/to/config.json]

Configuration:
    1. Set your Discord bot token in config.json
    2. Or set the DISCORD_BOT_TOKEN environment variable
    3. Adjust the quiz defaults in the "quiz" section as needed

Environment Variables:
    DISCORD_BOT_TOKEN: bot token, takes precedence over the config file
"""

import asyncio
import sys
import os
import json
import logging
from pathlib import Path

TOKEN_PLACEHOLDER = "YOUR_DISCORD_BOT_TOKEN_HERE"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def load_config(config_path="config.json"):
    """Load configuration from a JSON file."""
    config_path = Path(config_path)

    if not config_path.exists():
        print(f"❌ Error: {config_path} not found!")
        print("Create it with your Discord bot token and quiz settings.")
        sys.exit(1)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in {config_path}: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading {config_path}: {e}")
        sys.exit(1)

    if not isinstance(config, dict):
        print(f"❌ Error: {config_path} must contain a JSON object")
        sys.exit(1)
    return config


def get_bot_token(config):
    """Return the bot token, preferring DISCORD_BOT_TOKEN over the config file."""
    token = os.getenv('DISCORD_BOT_TOKEN')
    if token:
        return token

    token = config.get('bot', {}).get('token')
    if not token or token == TOKEN_PLACEHOLDER:
        print("❌ Error: no Discord bot token found.")
        print("Export DISCORD_BOT_TOKEN or put the token under bot.token in the config file.")
        sys.exit(1)

    return token


def setup_logging_from_config(config):
    """Set up console and file logging based on configuration."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "bot.log", encoding='utf-8')
        ]
    )

    error_handler = logging.FileHandler(log_directory / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(error_handler)

    # Reduce discord.py noise
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)


async def run_bot_with_config(config_path="config.json"):
    """Run the bot with configuration."""
    config = load_config(config_path)
    setup_logging_from_config(config)
    token = get_bot_token(config)

    from mcm_quiz.bot import run_bot
    await run_bot(token, config)


if __name__ == "__main__":
    try:
        print("🤖 Starting MCM/MCD Quiz Bot...")
        asyncio.run(run_bot_with_config(*sys.argv[1:2]))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
    except Exception as e:
        print(f"❌ Failed to start bot: {e}")
        sys.exit(1)
