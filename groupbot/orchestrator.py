"""
Routes chat events through setup, triggers, the knowledge base, the response
cache and the completion provider.
"""
from dataclasses import dataclass
from typing import Optional

from pymongo.database import Database

from groupbot.cache import ResponseCacheRegistry
from groupbot.completion import CompletionService
from groupbot.config import (
    FEEDBACK_BUTTONS,
    LEARNING_ENABLED,
    MIN_CONFIDENCE_THRESHOLD,
    WELCOME_NEW_MEMBERS,
)
from groupbot.constants import (
    INTERACTION_SOURCE_AI,
    SETUP_INSTRUCTIONS,
    SOURCE_ADMIN,
    SYSTEM_CONTEXT_TEMPLATE,
)
from groupbot.errors import AuthorizationDenied, MalformedInput, PersistenceFailure
from groupbot.groups import GroupStore
from groupbot.interactions import InteractionLog
from groupbot.knowledge import KnowledgeStore
from groupbot.locks import KeyedLocks
from groupbot.logger import logger
from groupbot.metrics import record_message
from groupbot.models import (
    FeedbackEvent,
    GroupConfig,
    IncomingMessage,
    InteractionRecord,
    KnowledgeEntry,
    MembershipChange,
    MembershipEvent,
    Messenger,
)
from groupbot.setup_flow import SetupSessionStore, SetupStateMachine
from groupbot.triggers import should_respond
from groupbot.utils import get_persistence_error_message, utcnow


@dataclass
class Answer:
    text: str
    source: str
    from_cache: bool = False
    fallback: bool = False


@dataclass
class FeedbackOutcome:
    recorded: bool
    message: str
    entry: Optional[KnowledgeEntry] = None


class ConversationOrchestrator:
    def __init__(
        self,
        db: Database,
        messenger: Messenger,
        completion: CompletionService,
        bot_user_id: str,
        caches: ResponseCacheRegistry | None = None,
        group_locks: KeyedLocks | None = None,
        user_locks: KeyedLocks | None = None,
        trust_threshold: float = MIN_CONFIDENCE_THRESHOLD,
        learning_enabled: bool = LEARNING_ENABLED,
        feedback_buttons: bool = FEEDBACK_BUTTONS,
        welcome_new_members: bool = WELCOME_NEW_MEMBERS,
    ):
        self.db = db
        self.messenger = messenger
        self.completion = completion
        self.bot_user_id = bot_user_id
        self.caches = caches or ResponseCacheRegistry()
        self.group_locks = group_locks or KeyedLocks()
        self.groups = GroupStore(db, self.group_locks)
        self.knowledge = KnowledgeStore(db, self.group_locks)
        self.interactions = InteractionLog(db)
        self.setup = SetupStateMachine(SetupSessionStore(db), self.groups, user_locks or KeyedLocks())
        self.trust_threshold = trust_threshold
        self.learning_enabled = learning_enabled
        self.feedback_buttons = feedback_buttons
        self.welcome_new_members = welcome_new_members

    @property
    def bot_mention(self) -> str:
        return f"<@{self.bot_user_id}>"

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def handle_message(self, message: IncomingMessage) -> Optional[InteractionRecord]:
        """
        Process one free-text message (commands are routed elsewhere).

        Returns the recorded interaction when the bot answered.
        """
        if self._continue_setup(message):
            return None

        if message.is_private:
            return None

        group = self.groups.ensure(message.chat_id)
        if group is None or not group.setup_complete or group.paused:
            return None

        record_message(self.db, message.chat_id, message.sender_id, message.text, message.message_id)

        if self._learn_from_admin(message):
            return None

        if not should_respond(message, group, self.bot_mention):
            return None

        question = message.text.replace(self.bot_mention, "").strip() or message.text
        return self._deliver(message, question, self.answer(group, question))

    def answer(self, group: GroupConfig, question: str) -> Answer:
        """
        Pick an answer: trusted knowledge entry, then cached completion, then
        the provider. A provider failure yields a fallback apology.
        """
        entry = self.knowledge.retrieve(group.group_id, question)
        if entry is not None and entry.confidence > self.trust_threshold:
            self.knowledge.record_usage(entry.id)
            logger.debug("Answering from knowledge entry %s (confidence %s)", entry.id, entry.confidence)
            return Answer(text=entry.answer, source=entry.id)

        cache = self.caches.for_group(group.group_id)
        cached = cache.get(question)
        if cached is not None:
            logger.debug("Answering group_id=%s from response cache", group.group_id)
            return Answer(text=cached, source=INTERACTION_SOURCE_AI, from_cache=True)

        result = self.completion.complete(question, build_system_context(group))
        if not result.ok:
            return Answer(text=result.text, source=INTERACTION_SOURCE_AI, fallback=True)

        cache.put(question, result.text)
        return Answer(text=result.text, source=INTERACTION_SOURCE_AI)

    def handle_feedback(self, event: FeedbackEvent) -> FeedbackOutcome:
        interaction = self.interactions.find_by_answer(event.chat_id, event.answer_id)
        if interaction is None:
            logger.debug("Feedback for unknown answer %s in %s", event.answer_id, event.chat_id)
            return FeedbackOutcome(recorded=False, message="")

        try:
            first = self.interactions.set_feedback(event.chat_id, event.answer_id, event.positive)
        except PersistenceFailure as e:
            return FeedbackOutcome(recorded=False, message=get_persistence_error_message(e, "feedback"))

        entry = None
        if first and interaction.knowledge_entry_id:
            try:
                entry = self.knowledge.apply_feedback(
                    event.chat_id, interaction.knowledge_entry_id, event.positive
                )
            except PersistenceFailure as e:
                # Unmark the vote so the member can try again
                self.interactions.reset_feedback(event.chat_id, event.answer_id)
                return FeedbackOutcome(recorded=False, message=get_persistence_error_message(e, "feedback"))

        self.messenger.remove_feedback_buttons(event.chat_id, event.answer_id, interaction.answer)
        if not first:
            return FeedbackOutcome(recorded=False, message="Feedback for this answer was already recorded.")

        message = "Thanks!" if event.positive else "Thanks, I'll improve!"
        return FeedbackOutcome(recorded=True, message=message, entry=entry)

    def handle_membership(self, event: MembershipEvent) -> Optional[str]:
        if event.kind == MembershipChange.BOT_JOINED:
            self.groups.ensure(event.chat_id, event.chat_name)
            where = f" to *{event.chat_name}*" if event.chat_name else ""
            text = f"Thank you for adding me{where}!\n\n{SETUP_INSTRUCTIONS}"
            self.messenger.send_text(event.chat_id, text)
            logger.info("Bot added to group %s (%s)", event.chat_id, event.chat_name)
            return text

        if not self.welcome_new_members or event.member_id == self.bot_user_id:
            return None
        group = self.groups.get(event.chat_id)
        if group is None or not group.setup_complete or group.paused:
            return None

        name = event.member_name or f"<@{event.member_id}>"
        text = f"Welcome {name}!\n\n{group.purpose}"
        self.messenger.send_text(event.chat_id, text)
        return text

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def start_setup(self, user_id: str, group_id: str, is_admin: bool) -> str:
        self.groups.ensure(group_id)
        return self.setup.start(user_id, group_id, is_admin)

    def cancel_setup(self, user_id: str) -> bool:
        return self.setup.cancel(user_id)

    def quick_setup(self, group_id: str, payload: str, is_admin: bool) -> GroupConfig:
        return self.setup.quick_setup(group_id, payload, is_admin)

    def teach(self, group_id: str, question: str, answer: str, is_admin: bool) -> KnowledgeEntry:
        _require_admin(is_admin)
        return self.knowledge.teach(group_id, question, answer)

    def forget(self, group_id: str, keyword: str, is_admin: bool) -> int:
        _require_admin(is_admin)
        deleted = self.knowledge.forget(group_id, keyword)
        self.caches.clear(group_id)
        return deleted

    def set_paused(self, group_id: str, paused: bool, is_admin: bool) -> bool:
        _require_admin(is_admin)
        return self.groups.set_paused(group_id, paused)

    def stats(self, group_id: str) -> dict:
        return self.interactions.get_stats(group_id, learned_responses=self.knowledge.count(group_id))

    def export_group(self, group_id: str, is_admin: bool) -> dict:
        _require_admin(is_admin)
        group = self.groups.get(group_id)
        return {
            "group": group.to_dict() if group else None,
            "knowledge_entries": [entry.to_dict() for entry in self.knowledge.list_entries(group_id)],
            "stats": self.stats(group_id),
            "exported_at": utcnow().isoformat() + "Z",
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _continue_setup(self, message: IncomingMessage) -> bool:
        """Feed the message into the sender's setup session. Returns True if one was active."""
        try:
            outcome = self.setup.advance(message.sender_id, message.text)
        except PersistenceFailure as e:
            self.messenger.send_text(message.chat_id, get_persistence_error_message(e, "setup"))
            return True
        if outcome is None:
            return False

        self.messenger.send_text(message.chat_id, outcome.message)
        return True

    def _learn_from_admin(self, message: IncomingMessage) -> bool:
        """
        Treat an admin's reply to a member's question as the answer to teach.
        Returns True if something was learned; the bot then stays quiet.
        """
        reply_to = message.reply_to
        if not (self.learning_enabled and message.sender_is_admin and reply_to):
            return False
        # Addressed to the bot: a question, not an answer
        if self.bot_mention in message.text:
            return False
        if reply_to.author_is_bot or not reply_to.text or reply_to.author_id == message.sender_id:
            return False

        try:
            question = reply_to.text.replace(self.bot_mention, "").strip()
            self.knowledge.teach(message.chat_id, question, message.text.strip(), source=SOURCE_ADMIN)
        except (MalformedInput, PersistenceFailure) as e:
            logger.warning("Could not learn from admin reply in %s: %s", message.chat_id, e)
            return False
        return True

    def _deliver(self, message: IncomingMessage, question: str, answer: Answer) -> Optional[InteractionRecord]:
        reply_to = message.thread_id or message.message_id
        answer_id = self.messenger.send_text(message.chat_id, answer.text, reply_to=reply_to)
        if answer.fallback or answer_id is None:
            # Fallback apologies are not answers: no record, no buttons
            return None

        record = self.interactions.record(InteractionRecord(
            group_id=message.chat_id,
            question=question,
            answer=answer.text,
            source=answer.source,
            question_msg_id=message.message_id,
            answer_msg_id=answer_id,
        ))
        if record is not None and self.feedback_buttons:
            self.messenger.attach_feedback_buttons(message.chat_id, answer_id, answer.text, answer_id)
        return record


def build_system_context(group: GroupConfig) -> str:
    return SYSTEM_CONTEXT_TEMPLATE.format(
        purpose=group.purpose or "General discussion",
        tone=group.tone or "friendly",
        rules=", ".join(group.rules) if group.rules else "None",
    )


def _require_admin(is_admin: bool) -> None:
    if not is_admin:
        raise AuthorizationDenied("Only admins can use this command.")
