from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from bson import ObjectId
from pymongo import AsyncMongoClient, UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

from image_governance.core.config import get_settings
from image_governance.services.store import (
    BulkUpdateResult,
    DocumentStore,
    FieldUpdate,
    InMemoryDocumentStore,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

logger = logging.getLogger(__name__)


class MongoRepository:
    def __init__(self, mongo_url: str | None, database_name: str, server_selection_timeout_ms: int) -> None:
        self.mongo_url = mongo_url
        self.database_name = database_name
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._client: AsyncMongoClient | None = None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def coerce_id(self, document_id: str) -> ObjectId:
        if not isinstance(document_id, str) or not ObjectId.is_valid(document_id):
            raise RepositoryValidationError(f"invalid document id: {document_id!r}")
        return ObjectId(document_id)

    async def find(
        self,
        collection: str,
        *,
        filter: dict[str, Any] | None = None,
        projection: dict[str, int] | None = None,
        limit: int,
    ) -> list[dict[str, Any]]:
        if limit < 1:
            return []
        database = self._get_database()
        try:
            cursor = database[collection].find(filter or {}, projection).limit(limit)
            return await cursor.to_list(length=None)
        except PyMongoError as exc:
            raise RepositoryUnavailableError(f"query against {collection} failed: {exc}") from exc

    async def bulk_update(self, collection: str, updates: list[FieldUpdate]) -> BulkUpdateResult:
        if not updates:
            return BulkUpdateResult()
        operations = [_to_update_one(update) for update in updates]
        database = self._get_database()
        try:
            written = await database[collection].bulk_write(operations, ordered=False)
        except BulkWriteError as exc:
            details = exc.details or {}
            write_errors = [str(item.get("errmsg", "unknown write error")) for item in details.get("writeErrors", [])]
            logger.warning(
                "bulk update on %s finished with %s write errors",
                collection,
                len(write_errors),
            )
            return BulkUpdateResult(
                matched_count=int(details.get("nMatched", 0)),
                modified_count=int(details.get("nModified", 0)),
                write_errors=write_errors,
            )
        except PyMongoError as exc:
            raise RepositoryUnavailableError(f"bulk update on {collection} failed: {exc}") from exc

        return BulkUpdateResult(matched_count=written.matched_count, modified_count=written.modified_count)

    def _get_database(self):
        if not self.mongo_url:
            raise RepositoryUnavailableError("IMG_GOV_MONGO_URL is not configured")
        if self._client is None:
            self._client = AsyncMongoClient(
                self.mongo_url,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
            )
        return self._client[self.database_name]


def _to_update_one(update: FieldUpdate) -> UpdateOne:
    if update.expected_element is None:
        return UpdateOne({"_id": update.document_id}, {"$set": {update.field: update.value}})
    return UpdateOne(
        {"_id": update.document_id, update.field: update.expected_element},
        {"$set": {f"{update.field}.$": update.value}},
    )


@lru_cache
def get_document_store() -> DocumentStore:
    settings = get_settings()
    if settings.storage_backend == "mongo":
        return MongoRepository(
            mongo_url=settings.mongo_url,
            database_name=settings.mongo_database,
            server_selection_timeout_ms=settings.mongo_server_selection_timeout_ms,
        )
    if settings.storage_backend == "memory":
        return InMemoryDocumentStore()
    raise RepositoryUnavailableError(
        f"storage backend {settings.storage_backend!r} does not provide a document store for image governance"
    )
