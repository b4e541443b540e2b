"""
Append-only log of answered messages, plus statistics, export and retention.
"""
from datetime import timedelta
from typing import Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

from groupbot.constants import FEEDBACK_NEGATIVE, FEEDBACK_POSITIVE, FEEDBACK_UNSET
from groupbot.errors import PersistenceFailure
from groupbot.logger import logger
from groupbot.metrics import get_activity_counts
from groupbot.models import InteractionRecord
from groupbot.utils import utcnow


class InteractionLog:
    def __init__(self, db: Database):
        self.db = db
        self.interactions = db["interactions"]

    def record(self, record: InteractionRecord) -> Optional[InteractionRecord]:
        """Store an answered message. Failures are logged; the answer was already sent."""
        try:
            result = self.interactions.insert_one({
                "group_id": record.group_id,
                "question": record.question,
                "answer": record.answer,
                "source": record.source,
                "question_msg_id": record.question_msg_id,
                "answer_msg_id": record.answer_msg_id,
                "feedback": FEEDBACK_UNSET,
                "timestamp": utcnow(),
            })
        except PyMongoError as e:
            logger.exception("Error storing interaction for group_id=%s: %s", record.group_id, e)
            return None
        record.id = str(result.inserted_id)
        return record

    def find_by_answer(self, group_id: str, answer_msg_id: str) -> Optional[InteractionRecord]:
        try:
            doc = self.interactions.find_one({"group_id": group_id, "answer_msg_id": answer_msg_id})
        except PyMongoError as e:
            logger.exception("Error loading interaction %s: %s", answer_msg_id, e)
            return None
        return InteractionRecord.from_document(doc) if doc else None

    def set_feedback(self, group_id: str, answer_msg_id: str, positive: bool) -> bool:
        """
        Record feedback for an answer if none was recorded yet.

        Returns True if this call set the feedback, False if it was already set
        or the answer is unknown.

        Raises:
            PersistenceFailure: If the write fails
        """
        value = FEEDBACK_POSITIVE if positive else FEEDBACK_NEGATIVE
        try:
            # The feedback filter makes the write happen at most once
            result = self.interactions.update_one(
                {"group_id": group_id, "answer_msg_id": answer_msg_id, "feedback": FEEDBACK_UNSET},
                {"$set": {"feedback": value, "feedback_at": utcnow()}},
            )
        except PyMongoError as e:
            logger.exception("Error updating feedback for %s: %s", answer_msg_id, e)
            raise PersistenceFailure("set_feedback", e)
        return result.modified_count > 0

    def reset_feedback(self, group_id: str, answer_msg_id: str) -> bool:
        """Clear recorded feedback so it can be given again. Failures are logged."""
        try:
            result = self.interactions.update_one(
                {"group_id": group_id, "answer_msg_id": answer_msg_id},
                {"$set": {"feedback": FEEDBACK_UNSET}, "$unset": {"feedback_at": ""}},
            )
        except PyMongoError as e:
            logger.exception("Error resetting feedback for %s: %s", answer_msg_id, e)
            return False
        return result.modified_count > 0

    def get_stats(self, group_id: str, learned_responses: int = 0) -> dict:
        activity = get_activity_counts(self.db, group_id)
        try:
            bot_responses = self.interactions.count_documents({"group_id": group_id})
            good_feedback = self.interactions.count_documents(
                {"group_id": group_id, "feedback": FEEDBACK_POSITIVE}
            )
            total_feedback = self.interactions.count_documents(
                {"group_id": group_id, "feedback": {"$ne": FEEDBACK_UNSET}}
            )
        except PyMongoError as e:
            logger.exception("Error getting stats for group_id=%s: %s", group_id, e)
            bot_responses = good_feedback = total_feedback = 0

        accuracy = round(good_feedback / total_feedback * 100) if total_feedback > 0 else 0
        return {
            "total_messages": activity["total_messages"],
            "bot_responses": bot_responses,
            "learned_responses": learned_responses,
            "active_users": activity["active_users"],
            "feedback_count": total_feedback,
            "accuracy": accuracy,
        }

    def cleanup_old_data(self, days: int) -> int:
        """Delete messages and interactions older than `days`. Returns the number removed."""
        cutoff = utcnow() - timedelta(days=days)
        try:
            messages = self.db["messages"].delete_many({"timestamp": {"$lt": cutoff}})
            interactions = self.interactions.delete_many({"timestamp": {"$lt": cutoff}})
        except PyMongoError as e:
            logger.exception("Error cleaning up data older than %s days: %s", days, e)
            return 0
        removed = messages.deleted_count + interactions.deleted_count
        logger.info("Cleaned up %s records older than %s days", removed, days)
        return removed
