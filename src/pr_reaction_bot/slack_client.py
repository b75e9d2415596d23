"""Thin wrapper over the Slack Web API calls the bot needs."""

import logging

from slack_sdk.errors import SlackApiError

from pr_reaction_bot.models import MessageRef, SlackMessage

logger = logging.getLogger(__name__)

# Errors Slack returns when the reaction is already in the requested state.
_IDEMPOTENT_ERRORS = frozenset({"already_reacted", "no_reaction"})


def _error_code(exc: SlackApiError) -> str | None:
    try:
        return exc.response["error"]
    except (KeyError, TypeError):
        return None


class SlackClient:
    """Reaction and reply operations keyed by a :class:`MessageRef`.

    ``web_client`` is a ``slack_sdk.WebClient`` (``App.client`` under bolt).
    """

    def __init__(self, web_client) -> None:
        self._client = web_client

    def add_reaction(self, name: str, ref: MessageRef) -> None:
        try:
            self._client.reactions_add(
                channel=ref.channel, timestamp=ref.timestamp, name=name
            )
        except SlackApiError as exc:
            if _error_code(exc) not in _IDEMPOTENT_ERRORS:
                raise
            logger.debug("Reaction :%s: already present on %s", name, ref.timestamp)

    def remove_reaction(self, name: str, ref: MessageRef) -> None:
        try:
            self._client.reactions_remove(
                channel=ref.channel, timestamp=ref.timestamp, name=name
            )
        except SlackApiError as exc:
            if _error_code(exc) not in _IDEMPOTENT_ERRORS:
                raise
            logger.debug("Reaction :%s: not present on %s", name, ref.timestamp)

    def get_reactions(self, ref: MessageRef) -> set[str]:
        """Return the emoji names currently attached to the message."""
        response = self._client.reactions_get(
            channel=ref.channel, timestamp=ref.timestamp
        )
        message = response.get("message") or {}
        return {r["name"] for r in message.get("reactions", [])}

    def reply_error(self, msg: SlackMessage, error: Exception) -> None:
        """Post ``error`` back to the conversation that triggered it."""
        self._client.chat_postMessage(
            channel=msg.channel_id,
            thread_ts=msg.thread_ts,
            text=f":x: {error}",
        )

    def post_message(self, channel: str, text: str, thread_ts: str | None = None) -> str:
        """Post ``text`` to ``channel`` and return the new message's ``ts``."""
        response = self._client.chat_postMessage(
            channel=channel, text=text, thread_ts=thread_ts
        )
        return response["ts"]
