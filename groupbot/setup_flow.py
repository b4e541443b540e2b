"""
Multi-turn group setup dialogue.

An admin starts setup in a channel; the bot then asks for the purpose, tone,
rules and triggers one at a time. Each free-text reply from that admin
advances the session. Sessions are stored in MongoDB after every step so a
restart resumes where the admin left off.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from groupbot.constants import ALL_TRIGGERS, NO_RULES, SETUP_PROMPTS
from groupbot.errors import AuthorizationDenied, MalformedInput, PersistenceFailure
from groupbot.groups import GroupStore
from groupbot.locks import KeyedLocks
from groupbot.logger import logger
from groupbot.models import GroupConfig, SetupSession, SetupStep
from groupbot.utils import split_list, utcnow

QUICK_SETUP_FORMAT = "`quicksetup [purpose]|[tone]|[rules]|[triggers]`"

STEP_HINTS = {
    SetupStep.PURPOSE: "Please describe what this group is about, e.g. `Gaming community`.",
    SetupStep.TONE: "Please describe the tone I should use, e.g. `Friendly`.",
    SetupStep.RULES: "Please list rules separated by commas, e.g. `No spam, be respectful`, or say `none`.",
    SetupStep.TRIGGERS: "Please say `all`, or list trigger keywords separated by commas, e.g. `help, error`.",
    SetupStep.COMPLETE: "Setup is already complete.",
}


@dataclass
class ParseResult:
    ok: bool
    value: Any = None
    error: str = ""

    @classmethod
    def success(cls, value: Any) -> "ParseResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        return cls(ok=False, error=error)


def parse_step_answer(step: SetupStep, text: str) -> ParseResult:
    """Interpret a free-text answer for the given step. Never returns a partial value."""
    answer = (text or "").strip()
    if step == SetupStep.COMPLETE or not answer:
        return ParseResult.failure(STEP_HINTS[step])

    if step in (SetupStep.PURPOSE, SetupStep.TONE):
        return ParseResult.success(answer)

    if step == SetupStep.RULES:
        if answer.lower() == NO_RULES:
            return ParseResult.success([])
        rules = split_list(answer)
        return ParseResult.success(rules) if rules else ParseResult.failure(STEP_HINTS[step])

    if answer.lower() == ALL_TRIGGERS:
        return ParseResult.success([ALL_TRIGGERS])
    triggers = split_list(answer)
    return ParseResult.success(triggers) if triggers else ParseResult.failure(STEP_HINTS[step])


def parse_quick_setup(payload: str) -> ParseResult:
    """
    Parse `purpose|tone|rules|triggers` in one go.

    The value is a dict with all four fields, or the result is a failure
    naming the first field that could not be read.
    """
    parts = [part.strip() for part in (payload or "").split("|")]
    if len(parts) != 4:
        return ParseResult.failure(
            f"Invalid format! Use:\n{QUICK_SETUP_FORMAT}\n\n"
            "Example:\n`quicksetup Gaming community|Friendly|No spam|all`"
        )

    config = {}
    steps = (SetupStep.PURPOSE, SetupStep.TONE, SetupStep.RULES, SetupStep.TRIGGERS)
    for step, part in zip(steps, parts):
        result = parse_step_answer(step, part)
        if not result.ok:
            return ParseResult.failure(f"Invalid {step.value}. {result.error}")
        config[step.value] = result.value
    return ParseResult.success(config)


class SetupSessionStore:
    def __init__(self, db: Database):
        self.sessions = db["setup_sessions"]

    def load(self, user_id: str) -> Optional[SetupSession]:
        try:
            doc = self.sessions.find_one({"user_id": user_id})
        except PyMongoError as e:
            logger.exception("Error loading setup session for user_id=%s: %s", user_id, e)
            return None
        return SetupSession.from_document(doc) if doc else None

    def save(self, session: SetupSession) -> None:
        try:
            self.sessions.update_one(
                {"user_id": session.user_id},
                {
                    "$set": {
                        "group_id": session.group_id,
                        "step": session.step.value,
                        "data": session.data,
                        "updated_at": utcnow(),
                    },
                    "$setOnInsert": {"created_at": utcnow()},
                },
                upsert=True,
            )
        except PyMongoError as e:
            logger.exception("Error saving setup session for user_id=%s: %s", session.user_id, e)
            raise PersistenceFailure("save_setup_session", e)

    def delete(self, user_id: str) -> bool:
        try:
            result = self.sessions.delete_one({"user_id": user_id})
        except PyMongoError as e:
            logger.exception("Error deleting setup session for user_id=%s: %s", user_id, e)
            raise PersistenceFailure("delete_setup_session", e)
        return result.deleted_count > 0


@dataclass
class SetupOutcome:
    step: SetupStep
    message: str
    accepted: bool = True
    group: Optional[GroupConfig] = None
    data: dict = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return self.step == SetupStep.COMPLETE


class SetupStateMachine:
    def __init__(self, sessions: SetupSessionStore, groups: GroupStore, user_locks: KeyedLocks | None = None):
        self.sessions = sessions
        self.groups = groups
        self.user_locks = user_locks or KeyedLocks()

    def start(self, user_id: str, group_id: str, is_admin: bool) -> str:
        """
        Begin setup for a group, replacing any session the user already has.

        Returns the first question.

        Raises:
            AuthorizationDenied: If the user is not an admin of the group
            PersistenceFailure: If the session cannot be stored
        """
        if not is_admin:
            raise AuthorizationDenied("Only admins can configure the bot.")

        with self.user_locks.hold(user_id):
            self.sessions.save(SetupSession(user_id=user_id, group_id=group_id))
        logger.info("Setup started by user_id=%s for group_id=%s", user_id, group_id)
        return SETUP_PROMPTS[SetupStep.PURPOSE.value]

    def has_session(self, user_id: str) -> bool:
        return self.sessions.load(user_id) is not None

    def cancel(self, user_id: str) -> bool:
        with self.user_locks.hold(user_id):
            return self.sessions.delete(user_id)

    def advance(self, user_id: str, text: str) -> Optional[SetupOutcome]:
        """
        Feed the user's reply into their session.

        Returns None if the user has no session. An unreadable answer leaves
        the session on the same step and returns the format hint.

        Raises:
            PersistenceFailure: If the session or the final config cannot be stored
        """
        with self.user_locks.hold(user_id):
            session = self.sessions.load(user_id)
            if session is None:
                return None

            result = parse_step_answer(session.step, text)
            if not result.ok:
                return SetupOutcome(step=session.step, message=result.error, accepted=False, data=session.data)

            session.data[session.step.value] = result.value
            session.step = session.step.next()

            if session.step != SetupStep.COMPLETE:
                self.sessions.save(session)
                return SetupOutcome(step=session.step, message=SETUP_PROMPTS[session.step.value], data=session.data)

            group = self.groups.commit_setup(
                session.group_id,
                purpose=session.data[SetupStep.PURPOSE.value],
                tone=session.data[SetupStep.TONE.value],
                rules=session.data[SetupStep.RULES.value],
                triggers=session.data[SetupStep.TRIGGERS.value],
            )
            self.sessions.delete(user_id)

        return SetupOutcome(step=SetupStep.COMPLETE, message=format_setup_summary(group), group=group, data=session.data)

    def quick_setup(self, group_id: str, payload: str, is_admin: bool) -> GroupConfig:
        """
        Configure a group from a single `purpose|tone|rules|triggers` payload.

        Raises:
            AuthorizationDenied: If the user is not an admin
            MalformedInput: If the payload does not parse; nothing is stored
            PersistenceFailure: If the config cannot be stored
        """
        if not is_admin:
            raise AuthorizationDenied("Only admins can configure the bot.")

        result = parse_quick_setup(payload)
        if not result.ok:
            raise MalformedInput(result.error)

        config = result.value
        return self.groups.commit_setup(
            group_id,
            purpose=config["purpose"],
            tone=config["tone"],
            rules=config["rules"],
            triggers=config["triggers"],
        )


def format_setup_summary(group: GroupConfig) -> str:
    return (
        "*Setup Complete!*\n\n"
        f"*Purpose:* {group.purpose}\n"
        f"*Tone:* {group.tone}\n"
        f"*Rules:* {', '.join(group.rules) if group.rules else 'None'}\n"
        f"*Triggers:* {', '.join(group.triggers)}\n\n"
        "I'm now active and learning! Mention me with `help` to see all commands."
    )
