"""
Data model shared by the stores, the orchestrator and the Slack adapter.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol

from groupbot.constants import (
    ALL_TRIGGERS,
    DEFAULT_CONFIDENCE,
    FEEDBACK_UNSET,
    INTERACTION_SOURCE_AI,
    SOURCE_MANUAL,
)


class SetupStep(str, Enum):
    PURPOSE = "purpose"
    TONE = "tone"
    RULES = "rules"
    TRIGGERS = "triggers"
    COMPLETE = "complete"

    def next(self) -> "SetupStep":
        order = list(SetupStep)
        index = order.index(self)
        return order[min(index + 1, len(order) - 1)]


class ChatKind(str, Enum):
    PRIVATE = "private"
    GROUP = "group"


class MembershipChange(str, Enum):
    BOT_JOINED = "bot_joined"
    MEMBER_JOINED = "member_joined"


@dataclass
class GroupConfig:
    group_id: str
    name: str = ""
    purpose: str = ""
    tone: str = ""
    rules: list[str] = field(default_factory=list)
    triggers: list[str] = field(default_factory=list)
    setup_complete: bool = False
    paused: bool = False

    @property
    def responds_to_all_questions(self) -> bool:
        return ALL_TRIGGERS in self.triggers

    @classmethod
    def from_document(cls, doc: dict) -> "GroupConfig":
        return cls(
            group_id=doc["group_id"],
            name=doc.get("name") or "",
            purpose=doc.get("purpose") or "",
            tone=doc.get("tone") or "",
            rules=list(doc.get("rules") or []),
            triggers=list(doc.get("triggers") or []),
            setup_complete=bool(doc.get("setup_complete")),
            paused=bool(doc.get("paused")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SetupSession:
    user_id: str
    group_id: str
    step: SetupStep = SetupStep.PURPOSE
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: dict) -> "SetupSession":
        return cls(
            user_id=doc["user_id"],
            group_id=doc["group_id"],
            step=SetupStep(doc.get("step", SetupStep.PURPOSE.value)),
            data=dict(doc.get("data") or {}),
        )


@dataclass
class KnowledgeEntry:
    id: str
    group_id: str
    question: str
    answer: str
    confidence: float = DEFAULT_CONFIDENCE
    source: str = SOURCE_MANUAL
    usage_count: int = 0
    last_used: Optional[datetime] = None
    taught_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict) -> "KnowledgeEntry":
        return cls(
            id=str(doc["_id"]),
            group_id=doc["group_id"],
            question=doc["question"],
            answer=doc["answer"],
            confidence=float(doc.get("confidence", DEFAULT_CONFIDENCE)),
            source=doc.get("source") or SOURCE_MANUAL,
            usage_count=int(doc.get("usage_count", 0)),
            last_used=doc.get("last_used"),
            taught_at=doc.get("taught_at"),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("last_used", "taught_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class InteractionRecord:
    group_id: str
    question: str
    answer: str
    source: str = INTERACTION_SOURCE_AI
    question_msg_id: Optional[str] = None
    answer_msg_id: Optional[str] = None
    feedback: int = FEEDBACK_UNSET
    id: Optional[str] = None

    @property
    def knowledge_entry_id(self) -> Optional[str]:
        return None if self.source == INTERACTION_SOURCE_AI else self.source

    @classmethod
    def from_document(cls, doc: dict) -> "InteractionRecord":
        return cls(
            id=str(doc["_id"]),
            group_id=doc["group_id"],
            question=doc["question"],
            answer=doc["answer"],
            source=doc.get("source") or INTERACTION_SOURCE_AI,
            question_msg_id=doc.get("question_msg_id"),
            answer_msg_id=doc.get("answer_msg_id"),
            feedback=int(doc.get("feedback", FEEDBACK_UNSET)),
        )


@dataclass
class ReplyReference:
    message_id: str
    author_id: Optional[str] = None
    author_is_bot: bool = False
    text: Optional[str] = None


@dataclass
class IncomingMessage:
    chat_id: str
    chat_kind: ChatKind
    sender_id: str
    text: str
    message_id: str
    sender_is_admin: bool = False
    reply_to: Optional[ReplyReference] = None
    # Root of the conversation thread the message belongs to, if any
    thread_id: Optional[str] = None

    @property
    def is_private(self) -> bool:
        return self.chat_kind == ChatKind.PRIVATE


@dataclass
class FeedbackEvent:
    chat_id: str
    answer_id: str
    positive: bool
    user_id: Optional[str] = None


@dataclass
class MembershipEvent:
    chat_id: str
    kind: MembershipChange
    member_id: Optional[str] = None
    member_name: str = ""
    chat_name: str = ""


class Messenger(Protocol):
    """Outbound side of the chat transport."""

    def send_text(self, chat_id: str, text: str, reply_to: Optional[str] = None) -> Optional[str]:
        """Send a message and return its message id."""

    def attach_feedback_buttons(self, chat_id: str, message_id: str, text: str, reference: str) -> None:
        """Add 👍/👎 buttons to a sent message; each button carries the reference."""

    def remove_feedback_buttons(self, chat_id: str, message_id: str, text: str) -> None:
        """Remove the feedback buttons from a message."""
