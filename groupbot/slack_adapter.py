"""
Translation between Slack events and the assistant's event types, and the
outbound Messenger implementation on top of the Slack Web API.
"""
import threading
import time
from typing import Callable, Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from groupbot.config import SUPER_ADMIN_IDS
from groupbot.logger import logger
from groupbot.models import (
    ChatKind,
    FeedbackEvent,
    IncomingMessage,
    MembershipChange,
    MembershipEvent,
    ReplyReference,
)

FEEDBACK_ACTION_GOOD = "feedback_good"
FEEDBACK_ACTION_BAD = "feedback_bad"
POSITIVE_REACTIONS = {"+1", "thumbsup"}
NEGATIVE_REACTIONS = {"-1", "thumbsdown"}

# Slack limits section text to 3000 characters
MAX_SECTION_TEXT = 3000

# Thread messages scanned for a bot answer
THREAD_SCAN_LIMIT = 100

ADMIN_CACHE_TTL_SECONDS = 300

# Message subtypes that are edits, joins, bot posts etc. rather than member text
IGNORED_SUBTYPES = {
    "bot_message",
    "message_changed",
    "message_deleted",
    "channel_join",
    "channel_leave",
    "channel_topic",
    "channel_purpose",
    "channel_name",
}


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text[:MAX_SECTION_TEXT]}}


def feedback_blocks(text: str, reference: str) -> list[dict]:
    return [
        _section(text),
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "👍", "emoji": True},
                    "action_id": FEEDBACK_ACTION_GOOD,
                    "value": reference,
                },
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "👎", "emoji": True},
                    "action_id": FEEDBACK_ACTION_BAD,
                    "value": reference,
                },
            ],
        },
    ]


class SlackMessenger:
    def __init__(self, client: WebClient):
        self.client = client

    def send_text(self, chat_id: str, text: str, reply_to: Optional[str] = None) -> Optional[str]:
        try:
            response = self.client.chat_postMessage(channel=chat_id, text=text, thread_ts=reply_to)
        except SlackApiError as e:
            logger.error("Failed to send message to %s: %s", chat_id, e.response.get("error"))
            return None
        return response.get("ts")

    def attach_feedback_buttons(self, chat_id: str, message_id: str, text: str, reference: str) -> None:
        try:
            self.client.chat_update(
                channel=chat_id, ts=message_id, text=text, blocks=feedback_blocks(text, reference)
            )
        except SlackApiError as e:
            # Buttons are optional; the answer itself was delivered
            logger.warning("Could not add feedback buttons to %s: %s", message_id, e.response.get("error"))

    def remove_feedback_buttons(self, chat_id: str, message_id: str, text: str) -> None:
        try:
            self.client.chat_update(channel=chat_id, ts=message_id, text=text, blocks=[_section(text)])
        except SlackApiError as e:
            logger.warning("Could not remove feedback buttons from %s: %s", message_id, e.response.get("error"))

    def upload_document(self, chat_id: str, content: bytes, filename: str, comment: str) -> None:
        try:
            self.client.files_upload_v2(
                channel=chat_id, content=content, filename=filename, initial_comment=comment
            )
        except SlackApiError as e:
            logger.error("Failed to upload %s to %s: %s", filename, chat_id, e.response.get("error"))
            self.send_text(chat_id, "❌ I couldn't upload the export file. Please try again later.")


def is_admin(client: WebClient, user_id: str, super_admin_ids: list[str] | None = None) -> bool:
    """
    Workspace admins, owners and configured super admins may manage the bot.
    """
    super_admin_ids = SUPER_ADMIN_IDS if super_admin_ids is None else super_admin_ids
    if user_id in super_admin_ids:
        return True
    try:
        user = client.users_info(user=user_id).get("user") or {}
    except SlackApiError as e:
        logger.warning("Could not check admin status for %s: %s", user_id, e.response.get("error"))
        return False
    return bool(user.get("is_admin") or user.get("is_owner") or user.get("is_primary_owner"))


def fetch_reply_reference(client: WebClient, channel: str, thread_ts: str, bot_user_id: str) -> Optional[ReplyReference]:
    """
    Resolve what a thread reply answers to.

    If the bot has posted in the thread (its answers go there), the reply is
    to the bot's latest message; otherwise it is to the thread parent.
    """
    try:
        response = client.conversations_replies(channel=channel, ts=thread_ts, limit=THREAD_SCAN_LIMIT)
    except SlackApiError as e:
        logger.warning("Could not load thread %s: %s", thread_ts, e.response.get("error"))
        return ReplyReference(message_id=thread_ts)

    messages = response.get("messages") or []
    if not messages:
        return ReplyReference(message_id=thread_ts)

    for message in reversed(messages):
        if _is_bot_message(message, bot_user_id):
            return ReplyReference(
                message_id=message.get("ts") or thread_ts,
                author_id=bot_user_id,
                author_is_bot=True,
                text=message.get("text"),
            )

    parent = messages[0]
    return ReplyReference(
        message_id=thread_ts,
        author_id=parent.get("user"),
        author_is_bot=False,
        text=parent.get("text"),
    )


def _is_bot_message(message: dict, bot_user_id: str) -> bool:
    return message.get("user") == bot_user_id or bool(message.get("bot_id"))


def message_from_event(
    event: dict,
    client: WebClient,
    bot_user_id: str,
    admins: Optional["AdminCache"] = None,
) -> Optional[IncomingMessage]:
    """Build an IncomingMessage from a Slack `message` event, or None to ignore it."""
    if event.get("subtype") in IGNORED_SUBTYPES or event.get("bot_id"):
        return None
    user_id = event.get("user")
    text = event.get("text") or ""
    if not user_id or user_id == bot_user_id or not text.strip():
        return None

    channel = event.get("channel")
    ts = event.get("ts")
    thread_ts = event.get("thread_ts")

    reply_to = None
    if thread_ts and thread_ts != ts:
        if event.get("parent_user_id") == bot_user_id:
            reply_to = ReplyReference(message_id=thread_ts, author_id=bot_user_id, author_is_bot=True)
        else:
            reply_to = fetch_reply_reference(client, channel, thread_ts, bot_user_id)

    return IncomingMessage(
        chat_id=channel,
        chat_kind=ChatKind.PRIVATE if event.get("channel_type") == "im" else ChatKind.GROUP,
        sender_id=user_id,
        text=text,
        message_id=ts,
        sender_is_admin=admins.is_admin(user_id) if admins is not None else is_admin(client, user_id),
        reply_to=reply_to,
        thread_id=thread_ts,
    )


class AdminCache:
    """Remembers each user's admin status for a while to spare `users.info` calls."""

    def __init__(
        self,
        client: WebClient,
        ttl_seconds: float = ADMIN_CACHE_TTL_SECONDS,
        super_admin_ids: list[str] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.super_admin_ids = SUPER_ADMIN_IDS if super_admin_ids is None else super_admin_ids
        self._clock = clock
        self._entries: dict[str, tuple[bool, float]] = {}
        self._lock = threading.Lock()

    def is_admin(self, user_id: str) -> bool:
        now = self._clock()
        with self._lock:
            cached = self._entries.get(user_id)
        if cached is not None and now - cached[1] < self.ttl_seconds:
            return cached[0]

        value = is_admin(self.client, user_id, self.super_admin_ids)
        with self._lock:
            self._entries[user_id] = (value, now)
        return value


def feedback_from_action(body: dict) -> Optional[FeedbackEvent]:
    """Build a FeedbackEvent from a 👍/👎 button click."""
    actions = body.get("actions") or []
    if not actions:
        return None
    action = actions[0]
    action_id = action.get("action_id")
    if action_id not in (FEEDBACK_ACTION_GOOD, FEEDBACK_ACTION_BAD):
        return None

    channel = (body.get("channel") or {}).get("id")
    answer_id = action.get("value") or (body.get("message") or {}).get("ts")
    if not channel or not answer_id:
        return None
    return FeedbackEvent(
        chat_id=channel,
        answer_id=answer_id,
        positive=action_id == FEEDBACK_ACTION_GOOD,
        user_id=(body.get("user") or {}).get("id"),
    )


def feedback_from_reaction(event: dict, bot_user_id: str) -> Optional[FeedbackEvent]:
    """Build a FeedbackEvent from a 👍/👎 reaction on one of the bot's messages."""
    reaction = (event.get("reaction") or "").split("::")[0]
    if reaction in POSITIVE_REACTIONS:
        positive = True
    elif reaction in NEGATIVE_REACTIONS:
        positive = False
    else:
        return None

    item = event.get("item") or {}
    if item.get("type") != "message" or event.get("item_user") not in (None, bot_user_id):
        return None
    if event.get("user") == bot_user_id:
        return None
    return FeedbackEvent(chat_id=item.get("channel"), answer_id=item.get("ts"), positive=positive, user_id=event.get("user"))


def membership_from_event(event: dict, client: WebClient, bot_user_id: str) -> Optional[MembershipEvent]:
    """Build a MembershipEvent from a Slack `member_joined_channel` event."""
    channel = event.get("channel")
    user_id = event.get("user")
    if not channel or not user_id:
        return None

    if user_id != bot_user_id:
        return MembershipEvent(chat_id=channel, kind=MembershipChange.MEMBER_JOINED, member_id=user_id)

    chat_name = ""
    try:
        chat_name = (client.conversations_info(channel=channel).get("channel") or {}).get("name") or ""
    except SlackApiError as e:
        logger.warning("Could not load channel info for %s: %s", channel, e.response.get("error"))
    return MembershipEvent(chat_id=channel, kind=MembershipChange.BOT_JOINED, member_id=user_id, chat_name=chat_name)
