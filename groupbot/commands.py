"""
Chat commands. A command is a message that starts with the bot mention
followed by one of COMMANDS; everything else is conversation.
"""
import json
from dataclasses import dataclass
from typing import Callable, Optional

from groupbot.errors import AuthorizationDenied, MalformedInput, PersistenceFailure
from groupbot.logger import logger
from groupbot.models import IncomingMessage
from groupbot.orchestrator import ConversationOrchestrator
from groupbot.setup_flow import QUICK_SETUP_FORMAT, format_setup_summary
from groupbot.utils import (
    get_persistence_error_message,
    match_command,
    starts_with_mention,
    strip_leading_mention,
)

COMMANDS = [
    "help",
    "privacy",
    "setup",
    "cancel setup",
    "quicksetup",
    "teach",
    "train",
    "forget",
    "pause",
    "resume",
    "stats",
    "export",
]

TEACH_FORMAT = "`teach question | answer`"


@dataclass
class CommandReply:
    text: str
    document: Optional[dict] = None
    filename: Optional[str] = None

    def document_bytes(self) -> bytes:
        return json.dumps(self.document, indent=2, default=str).encode("utf-8")


def parse_command(text: str, bot_user_id: str) -> Optional[tuple[str, str]]:
    """Return (command, payload) if text is a command addressed to the bot."""
    if not starts_with_mention(text, bot_user_id):
        return None
    return match_command(strip_leading_mention(text), COMMANDS)


def dispatch_command(orchestrator: ConversationOrchestrator, message: IncomingMessage) -> Optional[CommandReply]:
    parsed = parse_command(message.text, orchestrator.bot_user_id)
    if parsed is None:
        return None

    command, payload = parsed
    logger.debug("Command %r from user_id=%s in %s", command, message.sender_id, message.chat_id)

    if command == "help":
        return CommandReply(get_help())
    if command == "privacy":
        return CommandReply(get_privacy())
    if command == "stats":
        return CommandReply(show_stats(orchestrator, message))
    if command == "cancel setup":
        return CommandReply(cancel_setup(orchestrator, message))

    if message.is_private:
        return CommandReply("This command only works in channels!")

    handlers: dict[str, Callable[[ConversationOrchestrator, IncomingMessage, str], object]] = {
        "setup": start_setup,
        "quicksetup": quick_setup,
        "teach": teach,
        "train": teach,
        "forget": forget,
        "pause": pause,
        "resume": resume,
        "export": export_data,
    }
    result = handlers[command](orchestrator, message, payload)
    return result if isinstance(result, CommandReply) else CommandReply(result)


def _run_admin_command(name: str, action: Callable[[], str]) -> str:
    try:
        return action()
    except AuthorizationDenied as e:
        logger.info("Denied %s: %s", name, e)
        return f"❌ {e}"
    except MalformedInput as e:
        return f"❌ {e.hint}"
    except PersistenceFailure as e:
        return get_persistence_error_message(e, name)


def get_help() -> str:
    logger.debug("Help")
    return """*Group Assistant*

*Setup:*
`setup` - answer four questions to configure me
`quicksetup [purpose]|[tone]|[rules]|[triggers]` - configure in one go
`cancel setup` - abandon a setup in progress

*Admin Commands:*
`teach <question> | <answer>` - teach me an answer
`forget <keyword>` - remove learned answers containing a keyword
`pause` - stop answering in this channel
`resume` - start answering again
`export` - download config and learned answers

*General:*
`stats` - view statistics
`privacy` - what I store
`help` - this message

Mention me before each command. React with 👍/👎 on my answers to help me learn!"""


def get_privacy() -> str:
    return """*Privacy & Data*

*What I store:*
- Channel messages (for statistics)
- Learned answers and your feedback on them
- Interaction statistics

*Your rights:*
- Admins can use `forget` to delete learned answers
- Admins can use `export` to download the data
- Messages and interactions are kept for a limited time

Contact a workspace admin for data deletion."""


def start_setup(orchestrator: ConversationOrchestrator, message: IncomingMessage, payload: str) -> str:
    def action() -> str:
        prompt = orchestrator.start_setup(message.sender_id, message.chat_id, message.sender_is_admin)
        return f"<@{message.sender_id}> {prompt}"

    return _run_admin_command("setup", action)


def cancel_setup(orchestrator: ConversationOrchestrator, message: IncomingMessage) -> str:
    def action() -> str:
        if orchestrator.cancel_setup(message.sender_id):
            return "Setup cancelled. Nothing was changed."
        return "You don't have a setup in progress."

    return _run_admin_command("cancel setup", action)


def quick_setup(orchestrator: ConversationOrchestrator, message: IncomingMessage, payload: str) -> str:
    if not payload.strip():
        return f"❌ Invalid format! Use:\n{QUICK_SETUP_FORMAT}"

    def action() -> str:
        group = orchestrator.quick_setup(message.chat_id, payload, message.sender_is_admin)
        return format_setup_summary(group)

    return _run_admin_command("quicksetup", action)


def teach(orchestrator: ConversationOrchestrator, message: IncomingMessage, payload: str) -> str:
    def action() -> str:
        parts = payload.split("|")
        if len(parts) != 2:
            raise MalformedInput(f"Invalid format. Use: {TEACH_FORMAT}")
        question, answer = (part.strip() for part in parts)
        entry = orchestrator.teach(message.chat_id, question, answer, message.sender_is_admin)
        return f"✅ Learned! I'll respond to: \"{entry.question}\""

    return _run_admin_command("teach", action)


def forget(orchestrator: ConversationOrchestrator, message: IncomingMessage, payload: str) -> str:
    def action() -> str:
        keyword = payload.strip()
        deleted = orchestrator.forget(message.chat_id, keyword, message.sender_is_admin)
        return f"✅ Forgot {deleted} response(s) containing \"{keyword}\""

    return _run_admin_command("forget", action)


def pause(orchestrator: ConversationOrchestrator, message: IncomingMessage, payload: str) -> str:
    def action() -> str:
        if not orchestrator.set_paused(message.chat_id, True, message.sender_is_admin):
            return "I'm not set up in this channel yet. Mention me with `setup` first."
        return "⏸️ Bot paused. Mention me with `resume` to continue."

    return _run_admin_command("pause", action)


def resume(orchestrator: ConversationOrchestrator, message: IncomingMessage, payload: str) -> str:
    def action() -> str:
        if not orchestrator.set_paused(message.chat_id, False, message.sender_is_admin):
            return "I'm not set up in this channel yet. Mention me with `setup` first."
        return "▶️ Bot resumed!"

    return _run_admin_command("resume", action)


def show_stats(orchestrator: ConversationOrchestrator, message: IncomingMessage) -> str:
    if message.is_private:
        return "This command only works in channels!"
    stats = orchestrator.stats(message.chat_id)
    return (
        "*Bot Statistics*\n\n"
        f"💬 Total Messages: {stats['total_messages']}\n"
        f"🤖 Bot Responses: {stats['bot_responses']}\n"
        f"📚 Learned Responses: {stats['learned_responses']}\n"
        f"👥 Active Users: {stats['active_users']}\n"
        f"📈 Accuracy: {stats['accuracy']}%"
    )


def export_data(orchestrator: ConversationOrchestrator, message: IncomingMessage, payload: str) -> CommandReply:
    try:
        document = orchestrator.export_group(message.chat_id, message.sender_is_admin)
    except AuthorizationDenied as e:
        return CommandReply(f"❌ {e}")
    return CommandReply(
        "📦 Your exported data",
        document=document,
        filename=f"group_{message.chat_id}_export.json",
    )
