from unittest.mock import MagicMock

import pytest
from slack_sdk.errors import SlackApiError

from conftest import FakeClock

from groupbot.models import ChatKind, MembershipChange
from groupbot.slack_adapter import (
    AdminCache,
    SlackMessenger,
    feedback_blocks,
    feedback_from_action,
    feedback_from_reaction,
    is_admin,
    membership_from_event,
    message_from_event,
)

BOT = "UBOT"


def api_error(error="channel_not_found"):
    return SlackApiError("failed", {"ok": False, "error": error})


@pytest.fixture
def client():
    client = MagicMock()
    client.users_info.return_value = {"user": {"id": "U1", "is_admin": False}}
    client.chat_postMessage.return_value = {"ok": True, "ts": "1700.0002"}
    return client


class TestMessageFromEvent:
    def test_channel_message(self, client):
        message = message_from_event(
            {"type": "message", "channel": "C1", "channel_type": "channel", "user": "U1", "text": "hi", "ts": "1.1"},
            client,
            BOT,
        )
        assert message.chat_id == "C1"
        assert message.chat_kind == ChatKind.GROUP
        assert message.sender_id == "U1"
        assert message.message_id == "1.1"
        assert message.reply_to is None
        assert not message.sender_is_admin

    def test_direct_message_is_private(self, client):
        message = message_from_event(
            {"channel": "D1", "channel_type": "im", "user": "U1", "text": "hi", "ts": "1.1"}, client, BOT
        )
        assert message.is_private

    @pytest.mark.parametrize(
        "event",
        [
            {"channel": "C1", "user": "U1", "text": "hi", "ts": "1.1", "subtype": "message_changed"},
            {"channel": "C1", "bot_id": "B1", "text": "hi", "ts": "1.1"},
            {"channel": "C1", "user": BOT, "text": "hi", "ts": "1.1"},
            {"channel": "C1", "user": "U1", "text": "   ", "ts": "1.1"},
        ],
    )
    def test_ignored(self, client, event):
        assert message_from_event(event, client, BOT) is None

    def test_thread_reply_to_bot(self, client):
        message = message_from_event(
            {"channel": "C1", "user": "U1", "text": "ok", "ts": "2.2", "thread_ts": "1.1", "parent_user_id": BOT},
            client,
            BOT,
        )
        assert message.reply_to.author_is_bot
        assert message.thread_id == "1.1"
        client.conversations_replies.assert_not_called()

    def test_thread_reply_to_member_loads_parent(self, client):
        client.conversations_replies.return_value = {"messages": [{"user": "U2", "text": "When is the raid?"}]}
        message = message_from_event(
            {"channel": "C1", "user": "U1", "text": "Saturday", "ts": "2.2", "thread_ts": "1.1", "parent_user_id": "U2"},
            client,
            BOT,
        )
        assert message.reply_to.author_id == "U2"
        assert message.reply_to.text == "When is the raid?"
        assert not message.reply_to.author_is_bot

    def test_thread_with_bot_answer_is_reply_to_bot(self, client):
        client.conversations_replies.return_value = {
            "messages": [
                {"user": "U2", "text": "When is the raid?", "ts": "1.1"},
                {"user": BOT, "text": "Saturday at 8pm", "ts": "1.2"},
                {"user": "U2", "text": "thanks", "ts": "1.3"},
            ]
        }
        message = message_from_event(
            {"channel": "C1", "user": "U1", "text": "and on Sunday?", "ts": "2.2", "thread_ts": "1.1", "parent_user_id": "U2"},
            client,
            BOT,
        )
        assert message.reply_to.author_is_bot
        assert message.reply_to.message_id == "1.2"
        assert message.reply_to.text == "Saturday at 8pm"

    def test_admin_status_comes_from_cache(self, client):
        admins = AdminCache(client, super_admin_ids=[])
        event = {"channel": "C1", "user": "U1", "text": "hi", "ts": "1.1"}
        message_from_event(event, client, BOT, admins)
        message_from_event(event, client, BOT, admins)
        assert client.users_info.call_count == 1


class TestIsAdmin:
    def test_workspace_admin(self, client):
        client.users_info.return_value = {"user": {"is_admin": True}}
        assert is_admin(client, "U1", super_admin_ids=[])

    def test_owner(self, client):
        client.users_info.return_value = {"user": {"is_owner": True}}
        assert is_admin(client, "U1", super_admin_ids=[])

    def test_super_admin(self, client):
        assert is_admin(client, "U9", super_admin_ids=["U9"])
        client.users_info.assert_not_called()

    def test_lookup_failure_is_not_admin(self, client):
        client.users_info.side_effect = api_error("user_not_found")
        assert not is_admin(client, "U1", super_admin_ids=[])


class TestAdminCache:
    def test_reuses_answer_within_ttl(self, client):
        clock = FakeClock()
        client.users_info.return_value = {"user": {"is_admin": True}}
        admins = AdminCache(client, ttl_seconds=300, super_admin_ids=[], clock=clock)

        assert admins.is_admin("U1")
        client.users_info.return_value = {"user": {"is_admin": False}}
        clock.advance(299)
        assert admins.is_admin("U1")
        assert client.users_info.call_count == 1

    def test_refreshes_after_ttl(self, client):
        clock = FakeClock()
        client.users_info.return_value = {"user": {"is_admin": True}}
        admins = AdminCache(client, ttl_seconds=300, super_admin_ids=[], clock=clock)

        admins.is_admin("U1")
        client.users_info.return_value = {"user": {"is_admin": False}}
        clock.advance(300)
        assert not admins.is_admin("U1")
        assert client.users_info.call_count == 2

    def test_users_are_cached_separately(self, client):
        admins = AdminCache(client, super_admin_ids=[])
        admins.is_admin("U1")
        admins.is_admin("U2")
        assert client.users_info.call_count == 2


class TestFeedbackEvents:
    def test_button(self):
        body = {
            "actions": [{"action_id": "feedback_bad", "value": "1700.0002"}],
            "channel": {"id": "C1"},
            "user": {"id": "U1"},
            "message": {"ts": "1700.0002"},
        }
        event = feedback_from_action(body)
        assert event.chat_id == "C1"
        assert event.answer_id == "1700.0002"
        assert not event.positive

    def test_unrelated_button(self):
        assert feedback_from_action({"actions": [{"action_id": "other"}], "channel": {"id": "C1"}}) is None

    @pytest.mark.parametrize("reaction, positive", [("+1", True), ("thumbsup", True), ("-1", False), ("+1::skin-tone-2", True)])
    def test_reaction_on_bot_message(self, reaction, positive):
        event = feedback_from_reaction(
            {"reaction": reaction, "user": "U1", "item_user": BOT, "item": {"type": "message", "channel": "C1", "ts": "5.5"}},
            BOT,
        )
        assert event.positive is positive
        assert event.answer_id == "5.5"

    def test_other_reactions_are_ignored(self):
        assert feedback_from_reaction(
            {"reaction": "tada", "user": "U1", "item_user": BOT, "item": {"type": "message", "channel": "C1", "ts": "5.5"}},
            BOT,
        ) is None

    def test_reaction_on_member_message_is_ignored(self):
        assert feedback_from_reaction(
            {"reaction": "+1", "user": "U1", "item_user": "U2", "item": {"type": "message", "channel": "C1", "ts": "5.5"}},
            BOT,
        ) is None


class TestMembershipFromEvent:
    def test_member_joined(self, client):
        event = membership_from_event({"channel": "C1", "user": "U1"}, client, BOT)
        assert event.kind == MembershipChange.MEMBER_JOINED
        assert event.member_id == "U1"

    def test_bot_joined(self, client):
        client.conversations_info.return_value = {"channel": {"name": "gaming"}}
        event = membership_from_event({"channel": "C1", "user": BOT}, client, BOT)
        assert event.kind == MembershipChange.BOT_JOINED
        assert event.chat_name == "gaming"


class TestSlackMessenger:
    def test_send_text_returns_ts(self, client):
        assert SlackMessenger(client).send_text("C1", "hello", reply_to="1.1") == "1700.0002"
        client.chat_postMessage.assert_called_once_with(channel="C1", text="hello", thread_ts="1.1")

    def test_send_failure(self, client):
        client.chat_postMessage.side_effect = api_error()
        assert SlackMessenger(client).send_text("C1", "hello") is None

    def test_feedback_buttons(self, client):
        SlackMessenger(client).attach_feedback_buttons("C1", "5.5", "answer", "5.5")
        blocks = client.chat_update.call_args.kwargs["blocks"]
        assert blocks == feedback_blocks("answer", "5.5")
        assert [e["action_id"] for e in blocks[1]["elements"]] == ["feedback_good", "feedback_bad"]

    def test_remove_buttons(self, client):
        SlackMessenger(client).remove_feedback_buttons("C1", "5.5", "answer")
        blocks = client.chat_update.call_args.kwargs["blocks"]
        assert len(blocks) == 1
