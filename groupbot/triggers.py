from groupbot.constants import ALL_TRIGGERS
from groupbot.models import GroupConfig, IncomingMessage
from groupbot.utils import contains


def should_respond(message: IncomingMessage, group: GroupConfig, bot_mention: str) -> bool:
    """
    Decide whether a group message warrants a reply.

    Mentions and replies to the bot always get an answer. Otherwise the
    group's triggers decide: with `all`, any question; with keywords, any
    message containing one of them. Setup and pause state are checked by
    the caller.
    """
    text = message.text or ""

    # Always respond if mentioned
    if bot_mention and bot_mention in text:
        return True

    # Replying to the bot
    if message.reply_to is not None and message.reply_to.author_is_bot:
        return True

    if group.responds_to_all_questions and "?" in text:
        return True

    lowered = text.lower()
    # `all` is a sentinel, not a keyword to look for
    keywords = [t.lower() for t in group.triggers if t.strip() and t.lower() != ALL_TRIGGERS]
    return contains(lowered, keywords)
