"""
Group configuration persistence.
"""
from typing import Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from groupbot.errors import PersistenceFailure
from groupbot.locks import KeyedLocks
from groupbot.logger import logger
from groupbot.models import GroupConfig
from groupbot.utils import sanitize_slack_id, utcnow


class GroupStore:
    def __init__(self, db: Database, locks: KeyedLocks | None = None):
        self.groups = db["groups"]
        self.locks = locks or KeyedLocks()

    def get(self, group_id: str) -> Optional[GroupConfig]:
        try:
            doc = self.groups.find_one({"group_id": group_id})
        except PyMongoError as e:
            logger.exception("Error loading group_id=%s: %s", group_id, e)
            return None
        return GroupConfig.from_document(doc) if doc else None

    def ensure(self, group_id: str, name: str = "") -> Optional[GroupConfig]:
        """
        Get the group record, creating an unconfigured one on first contact.
        Returns None only if the database is unavailable.
        """
        group_id = sanitize_slack_id(group_id, "group_id")
        now = utcnow()
        try:
            doc = self.groups.find_one_and_update(
                {"group_id": group_id},
                {
                    "$setOnInsert": {
                        "name": name,
                        "purpose": "",
                        "tone": "",
                        "rules": [],
                        "triggers": [],
                        "setup_complete": False,
                        "paused": False,
                        "created_at": now,
                        "updated_at": now,
                    }
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.exception("Error ensuring group_id=%s: %s", group_id, e)
            return None

        if name and not doc.get("name"):
            # Backfill the display name for groups first seen through a message
            try:
                self.groups.update_one({"group_id": group_id}, {"$set": {"name": name}})
                doc["name"] = name
            except PyMongoError as e:
                logger.warning("Could not store name for group_id=%s: %s", group_id, e)

        return GroupConfig.from_document(doc)

    def commit_setup(self, group_id: str, purpose: str, tone: str, rules: list[str], triggers: list[str]) -> GroupConfig:
        """
        Store a completed setup and mark the group as configured.

        Raises:
            PersistenceFailure: If the write fails
        """
        group_id = sanitize_slack_id(group_id, "group_id")
        with self.locks.hold(group_id):
            try:
                doc = self.groups.find_one_and_update(
                    {"group_id": group_id},
                    {
                        "$set": {
                            "purpose": purpose,
                            "tone": tone,
                            "rules": list(rules),
                            "triggers": list(triggers),
                            "setup_complete": True,
                            "updated_at": utcnow(),
                        },
                        "$setOnInsert": {"name": "", "paused": False, "created_at": utcnow()},
                    },
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
            except PyMongoError as e:
                logger.exception("Error committing setup for group_id=%s: %s", group_id, e)
                raise PersistenceFailure("commit_setup", e)

        logger.info("Setup completed for group_id=%s", group_id)
        return GroupConfig.from_document(doc)

    def set_paused(self, group_id: str, paused: bool) -> bool:
        """
        Pause or resume replies in a group. Returns False if the group is unknown.

        Raises:
            PersistenceFailure: If the write fails
        """
        with self.locks.hold(group_id):
            try:
                result = self.groups.update_one(
                    {"group_id": group_id},
                    {"$set": {"paused": paused, "updated_at": utcnow()}},
                )
            except PyMongoError as e:
                logger.exception("Error toggling pause for group_id=%s: %s", group_id, e)
                raise PersistenceFailure("set_paused", e)

        logger.info("Group %s %s", group_id, "paused" if paused else "resumed")
        return result.matched_count > 0
