"""
Shared test fixtures and configuration for pytest.
"""

import copy
import logging
import os
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import bson
import pytest
from bson import ObjectId
from pymongo import InsertOne, ReplaceOne, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mongo_transfer.config.config_loader import TransferConfig  # noqa: E402


logger = logging.getLogger(__name__)


# ============================================================================
# Environment detection
# ============================================================================

def get_mongo_uri() -> str:
    return os.environ.get("MONGO_URI", "mongodb://localhost:27017")


def is_mongodb_available() -> bool:
    """Check if MongoDB is available for testing."""
    from pymongo import MongoClient

    client = MongoClient(get_mongo_uri(), serverSelectionTimeoutMS=1000)
    try:
        client.admin.command("ping")
        return True
    except PyMongoError as e:
        logger.debug(f"MongoDB not available: {e}")
        return False
    finally:
        client.close()


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires MongoDB)")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if MongoDB is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_mongodb_available():
        return

    skip_mongodb = pytest.mark.skip(
        reason="MongoDB not available (set MONGO_URI and ensure MongoDB is running)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_mongodb)


# ============================================================================
# In-memory database
# ============================================================================

class FakeCursor:
    """Iterable stand-in for a pymongo Cursor."""

    def __init__(self, documents: List[Dict[str, Any]], fail_after: Optional[int] = None):
        self._documents = documents
        self._fail_after = fail_after
        self.closed = False

    def __iter__(self):
        for index, document in enumerate(self._documents):
            if self._fail_after is not None and index >= self._fail_after:
                raise PyMongoError("cursor died")
            yield copy.deepcopy(document)

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class FakeCollection:
    """
    Minimal in-memory collection.

    Understands the calls the pipelines make: count_documents, find,
    insert_many, bulk_write (InsertOne, ReplaceOne, UpdateOne with
    $setOnInsert) and delete_many. Every call is appended to `calls`.
    Written documents go through bson.encode first, so values the driver
    cannot encode raise the same errors as against a server.

    Failure injection:
        fail_count: exception raised by count_documents
        fail_find_after: find() cursor raises after that many documents
        fail_writes: exception raised by insert_many and bulk_write
    """

    def __init__(self, name: str):
        self.name = name
        self.documents: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self.fail_count: Optional[Exception] = None
        self.fail_find_after: Optional[int] = None
        self.fail_writes: Optional[Exception] = None

    def _find_index(self, doc_id: Any) -> Optional[int]:
        for index, document in enumerate(self.documents):
            if document.get("_id") == doc_id:
                return index
        return None

    def get(self, doc_id: Any) -> Optional[Dict[str, Any]]:
        index = self._find_index(doc_id)
        return None if index is None else self.documents[index]

    def count_documents(self, query: Dict[str, Any]) -> int:
        self.calls.append("count_documents")
        if self.fail_count is not None:
            raise self.fail_count
        return len(self.documents)

    def find(self, query: Optional[Dict[str, Any]] = None, **kwargs) -> FakeCursor:
        self.calls.append("find")
        return FakeCursor(list(self.documents), fail_after=self.fail_find_after)

    def delete_many(self, query: Dict[str, Any]):
        self.calls.append("delete_many")
        deleted = len(self.documents)
        self.documents = []
        return SimpleNamespace(deleted_count=deleted)

    def _insert(self, document: Dict[str, Any]) -> bool:
        if "_id" not in document:
            document["_id"] = ObjectId()
        if self._find_index(document["_id"]) is not None:
            return False
        self.documents.append(copy.deepcopy(document))
        return True

    def insert_many(self, documents: List[Dict[str, Any]], ordered: bool = True):
        self.calls.append("insert_many")
        if self.fail_writes is not None:
            raise self.fail_writes
        for document in documents:
            bson.encode(document)

        inserted_ids = []
        errors = []
        for index, document in enumerate(documents):
            if self._insert(document):
                inserted_ids.append(document["_id"])
                continue
            errors.append({
                "index": index,
                "code": 11000,
                "errmsg": f"E11000 duplicate key error collection: {self.name} dup key: {document['_id']!r}",
            })
            if ordered:
                break

        if errors:
            raise BulkWriteError({
                "writeErrors": errors,
                "writeConcernErrors": [],
                "nInserted": len(inserted_ids),
                "nUpserted": 0,
                "nMatched": 0,
                "nModified": 0,
                "nRemoved": 0,
                "upserted": [],
            })
        return SimpleNamespace(inserted_ids=inserted_ids)

    def bulk_write(self, operations: List[Any], ordered: bool = True):
        self.calls.append("bulk_write")
        if self.fail_writes is not None:
            raise self.fail_writes
        for operation in operations:
            bson.encode(operation._doc)

        result = SimpleNamespace(inserted_count=0, matched_count=0, modified_count=0, upserted_count=0)
        for operation in operations:
            if isinstance(operation, InsertOne):
                self._insert(operation._doc)
                result.inserted_count += 1
                continue

            index = self._find_index(operation._filter["_id"])
            if isinstance(operation, ReplaceOne):
                replacement = dict(copy.deepcopy(operation._doc), _id=operation._filter["_id"])
                if index is None:
                    self.documents.append(replacement)
                    result.upserted_count += 1
                else:
                    self.documents[index] = replacement
                    result.matched_count += 1
                    result.modified_count += 1
            elif isinstance(operation, UpdateOne):
                if index is None:
                    created = {"_id": operation._filter["_id"]}
                    created.update(copy.deepcopy(operation._doc.get("$setOnInsert", {})))
                    self.documents.append(created)
                    result.upserted_count += 1
                else:
                    result.matched_count += 1
            else:
                raise TypeError(f"Unsupported operation: {operation!r}")
        return result


class FakeDatabase:
    """Dict of FakeCollections, created on first access like pymongo."""

    def __init__(self, name: str = "test"):
        self.name = name
        self.collections: Dict[str, FakeCollection] = {}
        self.fail_list: Optional[Exception] = None

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def add(self, name: str, documents: List[Dict[str, Any]]) -> FakeCollection:
        collection = self[name]
        collection.documents.extend(copy.deepcopy(documents))
        return collection

    def list_collection_names(self) -> List[str]:
        if self.fail_list is not None:
            raise self.fail_list
        return list(self.collections)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging() so caplog sees package records."""
    package_logger = logging.getLogger("mongo_transfer")
    yield
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def fake_db() -> FakeDatabase:
    """Fixture providing an empty in-memory database."""
    return FakeDatabase()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Fixture providing an empty data folder."""
    folder = tmp_path / "data"
    folder.mkdir()
    return folder


@pytest.fixture
def make_config(data_dir: Path):
    """Factory fixture for TransferConfig pointed at the data folder."""
    def _make(**overrides) -> TransferConfig:
        values = {"data_folder": str(data_dir), "log_file": None, "max_workers": 2}
        values.update(overrides)
        return TransferConfig(**values)
    return _make
