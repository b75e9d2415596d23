"""Slack event listener using Socket Mode.

Connects to Slack via the bolt framework and converts raw events into
SlackMessage dataclass instances for downstream processing.
"""

from __future__ import annotations

import collections
import logging
import os

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from pr_reaction_bot.models import SlackMessage

logger = logging.getLogger(__name__)

# Event subtypes that carry no new message content.
_IGNORED_SUBTYPES = frozenset({
    "channel_join",
    "channel_leave",
    "channel_topic",
    "channel_purpose",
    "channel_name",
    "channel_archive",
    "channel_unarchive",
    "group_join",
    "group_leave",
    "group_topic",
    "group_purpose",
    "group_name",
    "group_archive",
    "group_unarchive",
    "message_changed",
    "message_deleted",
})


class SlackListener:
    """Wraps a Slack Bolt ``App`` with Socket Mode for real-time events.

    Responsibilities
    ----------------
    * Connects to Slack and retrieves the bot's own user ID.
    * Converts raw ``message`` event dicts into :class:`SlackMessage` objects.
    * De-duplicates events using a bounded deque.
    """

    def __init__(self) -> None:
        bot_token = os.environ["SLACK_BOT_TOKEN"]
        app_token = os.environ["SLACK_APP_TOKEN"]

        self._app = App(token=bot_token)
        self._handler = SocketModeHandler(self._app, app_token)

        # The bot ignores its own messages, including its error replies.
        auth_response = self._app.client.auth_test()
        self._bot_user_id: str = auth_response["user_id"]
        logger.info("Bot user ID resolved: %s", self._bot_user_id)

        # Deduplication: keep the last 1 000 event identifiers.
        self._seen_events: collections.deque[str] = collections.deque(maxlen=1000)

    # -- public properties / helpers -----------------------------------------

    @property
    def bot_user_id(self) -> str:
        """The Slack user ID of the bot itself."""
        return self._bot_user_id

    @property
    def app(self) -> App:
        """The underlying ``slack_bolt.App`` instance."""
        return self._app

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the Socket Mode handler (blocking)."""
        logger.info("Starting Socket Mode handler")
        self._handler.start()

    def close(self) -> None:
        """Shut down the Socket Mode handler gracefully."""
        logger.info("Closing Socket Mode handler")
        self._handler.close()

    # -- event parsing -------------------------------------------------------

    def parse_event(self, event: dict) -> SlackMessage | None:
        """Convert a raw Slack ``message`` event into a :class:`SlackMessage`.

        Returns ``None`` when the event should be silently dropped (duplicate,
        irrelevant subtype, own message, or missing required fields).
        """

        # -- deduplication ---------------------------------------------------
        event_id = event.get("client_msg_id") or event.get("ts")
        if event_id is None:
            logger.debug("Event has no client_msg_id or ts; dropping")
            return None

        if event_id in self._seen_events:
            logger.debug("Duplicate event %s; dropping", event_id)
            return None

        self._seen_events.append(event_id)

        # -- filter irrelevant subtypes --------------------------------------
        subtype = event.get("subtype")
        if subtype is not None and subtype in _IGNORED_SUBTYPES:
            logger.debug("Ignored subtype %s; dropping", subtype)
            return None

        # -- required fields -------------------------------------------------
        channel_id = event.get("channel")
        ts = event.get("ts")
        if not channel_id or not ts:
            logger.debug("Event missing 'channel' or 'ts'; dropping")
            return None

        user_id = event.get("user")
        if user_id is not None and user_id == self._bot_user_id:
            logger.debug("Own message %s; dropping", ts)
            return None

        return SlackMessage(
            channel_id=channel_id,
            ts=ts,
            text=event.get("text", ""),
            user_id=user_id,
            thread_ts=event.get("thread_ts"),
            is_bot=event.get("bot_id") is not None or subtype == "bot_message",
        )
