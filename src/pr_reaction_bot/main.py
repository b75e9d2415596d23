"""Entry point and message-handling pipeline for pr-reaction-bot."""

from __future__ import annotations

import argparse
import logging
import signal
import sys

from pr_reaction_bot.calendar_watcher import CalendarWatcher
from pr_reaction_bot.commands import CommandRegistry, HelpCommand
from pr_reaction_bot.config import load_config
from pr_reaction_bot.pullrequest import get_commands
from pr_reaction_bot.slack_client import SlackClient
from pr_reaction_bot.slack_listener import SlackListener

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pr-reaction-bot",
        description="Show pull-request review state as reactions on Slack messages.",
    )
    parser.add_argument(
        "--config",
        metavar="PATH",
        default=None,
        help="Path to config YAML (default: ~/.config/pr-reaction-bot/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    return parser.parse_args(argv)


def handle_message(event, *, listener: SlackListener, registry: CommandRegistry) -> bool:
    """Process a single Slack message event: parse, then dispatch to commands."""
    msg = listener.parse_event(event)
    if msg is None:
        return False

    handled = registry.run(msg)
    if not handled:
        logger.debug("Unhandled message %s in %s", msg.ts, msg.channel_id)
    return handled


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        level=getattr(logging, args.log_level),
    )

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        logger.error("Config file not found: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(1)

    logger.info("Configuration loaded successfully")

    listener = SlackListener()
    slack_client = SlackClient(listener.app.client)
    registry = get_commands(slack_client, config)
    if registry.count() == 0:
        logger.warning("No pull-request integration configured")
    else:
        registry.add_command(HelpCommand(slack_client, registry))

    watcher = CalendarWatcher(
        config.calendars, registry, slack_client, interval=config.calendar_interval
    )

    # Register the message handler on the Slack app.
    @listener.app.event("message")
    def _on_message(event):
        handle_message(event, listener=listener, registry=registry)

    # Graceful shutdown on SIGTERM / SIGINT.
    def _shutdown(signum, _frame):
        sig_name = signal.Signals(signum).name
        logger.info("Received %s — shutting down", sig_name)
        watcher.stop()
        listener.close()
        registry.close()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    logger.info("Starting pr-reaction-bot")
    watcher.start()
    listener.start()
