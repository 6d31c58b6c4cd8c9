"""
Conflict strategies for writing imported documents.

A strategy decides what happens when an imported document carries an _id
that already exists in the target collection:
- insert: keep the existing record; the duplicate-key error is logged, not fatal
- upsert: replace the existing record (create it when absent)
- skip:   keep the existing record silently (create it when absent)

Documents without an _id are always plain inserts.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List

from bson.errors import BSONError
from pymongo import InsertOne, ReplaceOne, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

from ..core.exceptions import DocumentWriteError

logger = logging.getLogger(__name__)

# E11000 and its legacy variants
DUPLICATE_KEY_CODES = frozenset({11000, 11001, 12582})

# Raised by the driver while encoding documents, before anything is sent
ENCODE_ERRORS = (BSONError, OverflowError, TypeError, ValueError)


class ConflictStrategy(str, Enum):
    """Strategy for documents whose _id already exists."""
    INSERT = "insert"
    UPSERT = "upsert"
    SKIP = "skip"


@dataclass
class WriteOutcome:
    """Result of writing one batch."""
    written: int = 0
    duplicates: int = 0
    existing: int = 0

    @property
    def processed(self) -> int:
        return self.written + self.duplicates + self.existing


class ConflictResolver(ABC):
    """Writes one batch of documents under a conflict strategy."""

    strategy: ConflictStrategy

    @abstractmethod
    def write_batch(self, collection, documents: List[Dict[str, Any]]) -> WriteOutcome:
        """
        Write a batch to the collection.

        Raises:
            DocumentWriteError: For any error the strategy does not tolerate
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class InsertResolver(ConflictResolver):
    """Inserts every document; duplicate _id values are tolerated and logged."""

    strategy = ConflictStrategy.INSERT

    def write_batch(self, collection, documents: List[Dict[str, Any]]) -> WriteOutcome:
        if not documents:
            return WriteOutcome()

        try:
            # Unordered so one duplicate does not stop the rest of the batch.
            result = collection.insert_many(documents, ordered=False)
            return WriteOutcome(written=len(result.inserted_ids))
        except BulkWriteError as e:
            details = e.details or {}
            errors = details.get("writeErrors", [])
            other = [err for err in errors if err.get("code") not in DUPLICATE_KEY_CODES]
            if other or details.get("writeConcernErrors"):
                message = other[0].get("errmsg") if other else "write concern error"
                raise DocumentWriteError(f"Insert into {collection.name} failed: {message}") from e

            inserted = details.get("nInserted", len(documents) - len(errors))
            logger.warning(
                f"{len(errors)} documents already exist in {collection.name} "
                f"(duplicate _id), kept existing records"
            )
            return WriteOutcome(written=inserted, duplicates=len(errors))
        except PyMongoError as e:
            raise DocumentWriteError(f"Insert into {collection.name} failed: {e}") from e
        except ENCODE_ERRORS as e:
            raise DocumentWriteError(f"Cannot encode document for {collection.name}: {e}") from e


class UpsertResolver(ConflictResolver):
    """Replaces the record with the same _id, or creates it."""

    strategy = ConflictStrategy.UPSERT

    def write_batch(self, collection, documents: List[Dict[str, Any]]) -> WriteOutcome:
        if not documents:
            return WriteOutcome()

        operations = [
            ReplaceOne({"_id": doc["_id"]}, doc, upsert=True) if "_id" in doc else InsertOne(doc)
            for doc in documents
        ]
        result = _bulk_write(collection, operations, "Upsert")
        logger.debug(
            f"Upsert into {collection.name}: {result.upserted_count} created, "
            f"{result.matched_count} replaced, {result.inserted_count} inserted"
        )
        return WriteOutcome(written=len(documents))


class SkipResolver(ConflictResolver):
    """Creates records whose _id is not present yet; existing ones are untouched."""

    strategy = ConflictStrategy.SKIP

    def write_batch(self, collection, documents: List[Dict[str, Any]]) -> WriteOutcome:
        if not documents:
            return WriteOutcome()

        operations = []
        for doc in documents:
            if "_id" not in doc:
                operations.append(InsertOne(doc))
                continue
            fields = {key: value for key, value in doc.items() if key != "_id"}
            operations.append(
                UpdateOne({"_id": doc["_id"]}, {"$setOnInsert": fields}, upsert=True)
            )

        result = _bulk_write(collection, operations, "Skip-existing insert")
        existing = result.matched_count
        if existing:
            logger.info(f"Skipped {existing} existing documents in {collection.name}")
        return WriteOutcome(written=len(documents) - existing, existing=existing)


def _bulk_write(collection, operations: List[Any], label: str):
    try:
        return collection.bulk_write(operations, ordered=False)
    except BulkWriteError as e:
        errors = (e.details or {}).get("writeErrors", [])
        message = errors[0].get("errmsg") if errors else str(e)
        raise DocumentWriteError(f"{label} into {collection.name} failed: {message}") from e
    except PyMongoError as e:
        raise DocumentWriteError(f"{label} into {collection.name} failed: {e}") from e
    except ENCODE_ERRORS as e:
        raise DocumentWriteError(f"Cannot encode document for {collection.name}: {e}") from e


_RESOLVERS = {
    ConflictStrategy.INSERT: InsertResolver,
    ConflictStrategy.UPSERT: UpsertResolver,
    ConflictStrategy.SKIP: SkipResolver,
}


def get_resolver(strategy) -> ConflictResolver:
    """Return the resolver for a ConflictStrategy or its string value."""
    return _RESOLVERS[ConflictStrategy(strategy)]()
