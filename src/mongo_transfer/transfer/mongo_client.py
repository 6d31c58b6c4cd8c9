"""
MongoDB session management.
"""

import logging
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from ..config.config_loader import TransferConfig, redact_uri
from ..core.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)


class MongoSession:
    """
    Owns the MongoClient for one run.

    Example:
        >>> with MongoSession(config) as db:
        ...     ExportPipeline(db, config).run()
    """

    def __init__(self, config: TransferConfig):
        self.config = config
        self.client: Optional[MongoClient] = None
        self.database: Optional[Database] = None

    def connect(self) -> Database:
        """
        Connect, check the server answers, and return the target database.

        Raises:
            DatabaseConnectionError: If the server cannot be reached
        """
        uri = redact_uri(self.config.mongo_uri)
        try:
            self.client = MongoClient(
                self.config.mongo_uri,
                tz_aware=True,
                serverSelectionTimeoutMS=self.config.server_timeout_ms,
            )
            self.client.admin.command("ping")
            existing = self.client.list_database_names()
        except PyMongoError as e:
            self.close()
            raise DatabaseConnectionError(f"Cannot connect to {uri}: {e}", uri=uri) from e

        logger.info(f"Connected to MongoDB at {uri}")
        db_name = self.config.db_name
        if db_name in existing:
            logger.info(f"Database {db_name} already exists")
        else:
            logger.info(f"Database {db_name} will be created when the first collection is written")

        self.database = self.client[db_name]
        return self.database

    def close(self) -> None:
        if self.client is None:
            return
        self.client.close()
        self.client = None
        self.database = None
        logger.info("MongoDB connection closed")

    def __enter__(self) -> Database:
        return self.connect()

    def __exit__(self, *args) -> None:
        self.close()
