"""
Per-group knowledge base of taught question/answer pairs.

Entries carry a confidence score adjusted by member feedback. Retrieval
never returns an entry at or below RETRIEVAL_MIN_CONFIDENCE; such entries
stay stored but dormant until re-taught or lifted by positive feedback.
"""
import re
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from groupbot.constants import (
    DEFAULT_CONFIDENCE,
    KNOWLEDGE_SIMILARITY_THRESHOLD,
    KNOWLEDGE_SOURCES,
    MAX_ANSWER_LENGTH,
    MAX_QUESTION_LENGTH,
    RETRIEVAL_MIN_CONFIDENCE,
    SOURCE_MANUAL,
)
from groupbot.errors import MalformedInput, PersistenceFailure
from groupbot.feedback import adjust_confidence
from groupbot.locks import KeyedLocks
from groupbot.logger import logger
from groupbot.models import KnowledgeEntry
from groupbot.similarity import similarity
from groupbot.utils import utcnow


def question_key(question: str) -> str:
    return question.strip().lower()


class KnowledgeStore:
    def __init__(self, db: Database, locks: KeyedLocks | None = None):
        self.entries = db["knowledge_entries"]
        self.locks = locks or KeyedLocks()

    def teach(self, group_id: str, question: str, answer: str, source: str = SOURCE_MANUAL) -> KnowledgeEntry:
        """
        Store an answer for a question, replacing any earlier answer to the
        same question (compared case-insensitively).

        Re-teaching resets confidence to 1.0 and updates the provenance.

        Raises:
            MalformedInput: If question or answer is blank or too long
            PersistenceFailure: If the write fails
        """
        question = (question or "").strip()
        answer = (answer or "").strip()
        if not question or not answer:
            raise MalformedInput("Both a question and an answer are required.")
        if len(question) > MAX_QUESTION_LENGTH:
            raise MalformedInput(f"Question is too long (max {MAX_QUESTION_LENGTH} characters).")
        if len(answer) > MAX_ANSWER_LENGTH:
            raise MalformedInput(f"Answer is too long (max {MAX_ANSWER_LENGTH} characters).")
        if source not in KNOWLEDGE_SOURCES:
            source = SOURCE_MANUAL

        now = utcnow()
        with self.locks.hold(group_id):
            try:
                self.entries.update_one(
                    {"group_id": group_id, "question_key": question_key(question)},
                    {
                        "$set": {
                            "question": question,
                            "answer": answer,
                            "confidence": DEFAULT_CONFIDENCE,
                            "source": source,
                            "taught_at": now,
                        },
                        "$setOnInsert": {
                            "usage_count": 0,
                            "last_used": None,
                            "created_at": now,
                        },
                    },
                    upsert=True,
                )
                doc = self.entries.find_one({"group_id": group_id, "question_key": question_key(question)})
            except PyMongoError as e:
                logger.exception("Error teaching group_id=%s: %s", group_id, e)
                raise PersistenceFailure("teach", e)

        logger.info(
            "Learned (%s) for group_id=%s: Q=%r A=%r",
            source, group_id, question[:30], answer[:30],
        )
        return KnowledgeEntry.from_document(doc)

    def retrieve(self, group_id: str, query: str) -> Optional[KnowledgeEntry]:
        """
        Find the best entry for a query.

        1. Exact case-insensitive question match.
        2. Entries whose question appears inside the query.
        3. Entries whose question is lexically similar to the query.

        Phases 2 and 3 pick the highest confidence, then the most recently
        taught. Only entries above RETRIEVAL_MIN_CONFIDENCE are considered.
        """
        key = question_key(query or "")
        if not key:
            return None

        try:
            doc = self.entries.find_one({
                "group_id": group_id,
                "question_key": key,
                "confidence": {"$gt": RETRIEVAL_MIN_CONFIDENCE},
            })
            if doc:
                return KnowledgeEntry.from_document(doc)

            candidates = list(
                self.entries.find({
                    "group_id": group_id,
                    "confidence": {"$gt": RETRIEVAL_MIN_CONFIDENCE},
                }).sort([("confidence", DESCENDING), ("taught_at", DESCENDING)])
            )
        except PyMongoError as e:
            logger.exception("Error retrieving knowledge for group_id=%s: %s", group_id, e)
            return None

        for doc in candidates:
            if doc["question_key"] in key:
                return KnowledgeEntry.from_document(doc)

        for doc in candidates:
            if similarity(doc["question_key"], key) >= KNOWLEDGE_SIMILARITY_THRESHOLD:
                return KnowledgeEntry.from_document(doc)

        return None

    def get(self, entry_id: str) -> Optional[KnowledgeEntry]:
        object_id = _object_id(entry_id)
        if object_id is None:
            return None
        try:
            doc = self.entries.find_one({"_id": object_id})
        except PyMongoError as e:
            logger.exception("Error loading knowledge entry %s: %s", entry_id, e)
            return None
        return KnowledgeEntry.from_document(doc) if doc else None

    def record_usage(self, entry_id: str) -> None:
        object_id = _object_id(entry_id)
        if object_id is None:
            return
        try:
            self.entries.update_one(
                {"_id": object_id},
                {"$inc": {"usage_count": 1}, "$set": {"last_used": utcnow()}},
            )
        except PyMongoError as e:
            # The reply was already sent; usage counters are non-critical
            logger.exception("Error recording usage for entry %s: %s", entry_id, e)

    def apply_feedback(self, group_id: str, entry_id: str, positive: bool) -> Optional[KnowledgeEntry]:
        """
        Adjust an entry's confidence after a reaction.

        Returns the updated entry, or None if it no longer exists.

        Raises:
            PersistenceFailure: If the read or write fails
        """
        object_id = _object_id(entry_id)
        if object_id is None:
            return None

        with self.locks.hold(group_id):
            try:
                doc = self.entries.find_one({"_id": object_id, "group_id": group_id})
                if not doc:
                    return None
                confidence = adjust_confidence(float(doc.get("confidence", DEFAULT_CONFIDENCE)), positive)
                self.entries.update_one({"_id": object_id}, {"$set": {"confidence": confidence}})
            except PyMongoError as e:
                logger.exception("Error updating confidence for entry %s: %s", entry_id, e)
                raise PersistenceFailure("apply_feedback", e)

        doc["confidence"] = confidence
        logger.debug("Confidence for entry %s is now %s", entry_id, confidence)
        return KnowledgeEntry.from_document(doc)

    def forget(self, group_id: str, keyword: str) -> int:
        """
        Delete every entry whose question or answer contains keyword
        (case-insensitive). Returns the number of deleted entries.

        Raises:
            MalformedInput: If keyword is blank
            PersistenceFailure: If the delete fails
        """
        keyword = (keyword or "").strip()
        if not keyword:
            raise MalformedInput("Please provide a keyword to forget.")

        pattern = {"$regex": re.escape(keyword), "$options": "i"}
        with self.locks.hold(group_id):
            try:
                result = self.entries.delete_many({
                    "group_id": group_id,
                    "$or": [{"question": pattern}, {"answer": pattern}],
                })
            except PyMongoError as e:
                logger.exception("Error forgetting %r for group_id=%s: %s", keyword, group_id, e)
                raise PersistenceFailure("forget", e)

        logger.info("Forgot %s entries matching %r for group_id=%s", result.deleted_count, keyword, group_id)
        return result.deleted_count

    def list_entries(self, group_id: str) -> list[KnowledgeEntry]:
        try:
            docs = self.entries.find({"group_id": group_id}).sort("taught_at", DESCENDING)
            return [KnowledgeEntry.from_document(doc) for doc in docs]
        except PyMongoError as e:
            logger.exception("Error listing knowledge for group_id=%s: %s", group_id, e)
            return []

    def count(self, group_id: str) -> int:
        try:
            return self.entries.count_documents({"group_id": group_id})
        except PyMongoError as e:
            logger.exception("Error counting knowledge for group_id=%s: %s", group_id, e)
            return 0


def _object_id(entry_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(entry_id)
    except (InvalidId, TypeError):
        logger.warning("Invalid knowledge entry id: %r", entry_id)
        return None
