from conftest import BOT_ID, make_message

from groupbot.models import GroupConfig, ReplyReference
from groupbot.triggers import should_respond

MENTION = f"<@{BOT_ID}>"


def group(triggers):
    return GroupConfig(group_id="C123", purpose="Testing", tone="Dry", triggers=triggers, setup_complete=True)


class TestShouldRespond:
    def test_mention_always_answers(self):
        assert should_respond(make_message(f"{MENTION} hello"), group(["deploy"]), MENTION)

    def test_reply_to_bot_always_answers(self):
        reply = ReplyReference(message_id="1.1", author_id=BOT_ID, author_is_bot=True)
        assert should_respond(make_message("thanks, and then?", reply_to=reply), group([]), MENTION)

    def test_reply_to_member_does_not_count(self):
        reply = ReplyReference(message_id="1.1", author_id="UOTHER", author_is_bot=False)
        assert not should_respond(make_message("me too", reply_to=reply), group(["deploy"]), MENTION)

    def test_all_answers_questions(self):
        assert should_respond(make_message("anyone around?"), group(["all"]), MENTION)

    def test_all_ignores_statements(self):
        assert not should_respond(make_message("good morning"), group(["all"]), MENTION)

    def test_all_is_not_a_keyword(self):
        assert not should_respond(make_message("hello all"), group(["all"]), MENTION)

    def test_keyword_match_is_case_insensitive(self):
        assert should_respond(make_message("The DEPLOY failed"), group(["deploy", "error"]), MENTION)

    def test_keyword_miss(self):
        assert not should_respond(make_message("what's for lunch?"), group(["deploy"]), MENTION)

    def test_no_triggers(self):
        assert not should_respond(make_message("is this on?"), group([]), MENTION)

    def test_mention_with_no_triggers_and_no_question(self):
        assert should_respond(make_message(f"{MENTION} hello"), group([]), MENTION)
