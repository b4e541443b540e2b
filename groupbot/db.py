import os

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import ConfigurationError, ConnectionFailure, PyMongoError

from groupbot.config import MONGO_DB_NAME
from groupbot.constants import MONGODB_SERVER_SELECTION_TIMEOUT_MS
from groupbot.logger import logger

_db: Database | None = None


def ensure_indexes(db: Database) -> None:
    """Create the unique and lookup indexes every store relies on."""
    try:
        db["groups"].create_index("group_id", unique=True)
        db["setup_sessions"].create_index("user_id", unique=True)
        # At most one entry per (group, lowercase question)
        db["knowledge_entries"].create_index(
            [("group_id", ASCENDING), ("question_key", ASCENDING)], unique=True
        )
        db["interactions"].create_index([("group_id", ASCENDING), ("answer_msg_id", ASCENDING)])
        db["interactions"].create_index("timestamp")
        db["messages"].create_index([("group_id", ASCENDING), ("timestamp", ASCENDING)])
        db["user_stats"].create_index(
            [("group_id", ASCENDING), ("user_id", ASCENDING)], unique=True
        )
        logger.debug("MongoDB indexes created/verified")
    except PyMongoError as e:
        logger.warning("Could not create MongoDB indexes: %s", e)


def get_db() -> Database:
    """
    Return the application database, connecting on first use.

    Raises:
        ValueError: If MONGO_URL is not set
        ConnectionFailure, ConfigurationError: If MongoDB is unreachable
    """
    global _db
    if _db is not None:
        return _db

    try:
        mongo_url = os.environ.get("MONGO_URL")
        if not mongo_url:
            raise ValueError("MONGO_URL environment variable is not set")

        client = MongoClient(mongo_url, serverSelectionTimeoutMS=MONGODB_SERVER_SELECTION_TIMEOUT_MS)
        # Test the connection
        client.admin.command("ping")
        db = client[MONGO_DB_NAME]
        ensure_indexes(db)
        logger.info("MongoDB connection established successfully")
    except (ConnectionFailure, ConfigurationError, ValueError) as e:
        logger.critical("Failed to connect to MongoDB: %s", e)
        raise

    _db = db
    return _db
