from pymongo.database import Database
from pymongo.errors import PyMongoError

from groupbot.logger import logger
from groupbot.utils import utcnow


def record_message(db: Database, group_id: str, user_id: str, text: str, message_id: str | None) -> None:
    """
    Log a group message and bump the sender's message counter.
    """
    now = utcnow()
    try:
        db["messages"].insert_one({
            "group_id": group_id,
            "user_id": user_id,
            "content": text,
            "message_id": message_id,
            "timestamp": now,
        })
        # Atomically increment counter
        db["user_stats"].update_one(
            {"group_id": group_id, "user_id": user_id},
            {"$inc": {"message_count": 1}, "$set": {"last_active": now}},
            upsert=True,
        )
    except PyMongoError as e:
        logger.exception("Error recording message for group_id=%s: %s", group_id, e)
        # Don't raise - metrics are non-critical


def get_activity_counts(db: Database, group_id: str) -> dict:
    """
    Return total messages and distinct active users for a group.
    """
    try:
        return {
            "total_messages": db["messages"].count_documents({"group_id": group_id}),
            "active_users": db["user_stats"].count_documents({"group_id": group_id}),
        }
    except PyMongoError as e:
        logger.exception("Error reading activity for group_id=%s: %s", group_id, e)
        return {"total_messages": 0, "active_users": 0}
