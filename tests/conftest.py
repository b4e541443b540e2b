"""
Shared fixtures: an in-memory MongoDB, a recording messenger and a scripted
completion client.
"""
import itertools
import threading
import time
from types import SimpleNamespace

import mongomock
import pytest

from groupbot.cache import ResponseCache, ResponseCacheRegistry
from groupbot.completion import CompletionService
from groupbot.db import ensure_indexes
from groupbot.models import ChatKind, IncomingMessage, ReplyReference
from groupbot.orchestrator import ConversationOrchestrator

BOT_ID = "UBOT"
ADMIN_ID = "UADMIN"
MEMBER_ID = "UMEMBER"
GROUP_ID = "C123"


class FakeMessenger:
    """Records everything the bot sends and hands out sequential message ids."""

    def __init__(self):
        self.sent = []
        self.buttons = []
        self.removed = []
        self._ids = itertools.count(1)

    def send_text(self, chat_id, text, reply_to=None):
        message_id = f"9000.{next(self._ids):04d}"
        self.sent.append({"chat_id": chat_id, "text": text, "reply_to": reply_to, "id": message_id})
        return message_id

    def attach_feedback_buttons(self, chat_id, message_id, text, reference):
        self.buttons.append((chat_id, message_id, reference))

    def remove_feedback_buttons(self, chat_id, message_id, text):
        self.removed.append((chat_id, message_id))

    @property
    def texts(self):
        return [m["text"] for m in self.sent]


class FakeChatCompletions:
    """Stands in for `client.chat.completions`."""

    def __init__(self, reply="Generated answer", delay=0.0, error=None, response=None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.response = response
        self.calls = []
        self.release = threading.Event()

    def create(self, model, messages, temperature, timeout):
        self.calls.append({"model": model, "messages": messages})
        if self.delay:
            self.release.wait(self.delay)
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_client(**kwargs):
    completions = FakeChatCompletions(**kwargs)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def first_fallback(options):
    return options[0]


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def db():
    database = mongomock.MongoClient()["groupbot_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def completion_client():
    return make_client()


@pytest.fixture
def completion(completion_client):
    client, _ = completion_client
    service = CompletionService(client=client, timeout_seconds=1.0, choose=first_fallback)
    yield service
    service.shutdown()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def orchestrator(db, messenger, completion, clock):
    caches = ResponseCacheRegistry(lambda: ResponseCache(clock=clock))
    return ConversationOrchestrator(
        db=db,
        messenger=messenger,
        completion=completion,
        bot_user_id=BOT_ID,
        caches=caches,
        trust_threshold=0.7,
        learning_enabled=True,
        feedback_buttons=True,
        welcome_new_members=True,
    )


@pytest.fixture
def configured_group(orchestrator):
    """A group set up to answer every question."""
    return orchestrator.quick_setup(GROUP_ID, "Gaming community|Friendly|No spam|all", is_admin=True)


_message_ids = itertools.count(1)


def make_message(
    text,
    sender_id=MEMBER_ID,
    chat_id=GROUP_ID,
    is_admin=False,
    private=False,
    reply_to: ReplyReference | None = None,
):
    return IncomingMessage(
        chat_id=chat_id,
        chat_kind=ChatKind.PRIVATE if private else ChatKind.GROUP,
        sender_id=sender_id,
        text=text,
        message_id=f"{int(time.time())}.{next(_message_ids):06d}",
        sender_is_admin=is_admin,
        reply_to=reply_to,
    )
