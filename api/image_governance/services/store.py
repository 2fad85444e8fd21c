from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Protocol


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the document store is unavailable or not configured."""


class RepositoryValidationError(RepositoryError):
    """Raised when an identifier or payload cannot be used against the store."""


@dataclass(slots=True, frozen=True)
class FieldUpdate:
    """One ``$set`` against a single document.

    When ``expected_element`` is set the field is an array and only the element
    equal to it is replaced; the update is a no-op once that element is gone.
    """

    document_id: Any
    field: str
    value: str
    expected_element: str | None = None


@dataclass(slots=True)
class BulkUpdateResult:
    matched_count: int = 0
    modified_count: int = 0
    write_errors: list[str] = field(default_factory=list)


class DocumentStore(Protocol):
    def coerce_id(self, document_id: str) -> Any: ...

    async def find(
        self,
        collection: str,
        *,
        filter: dict[str, Any] | None = None,
        projection: dict[str, int] | None = None,
        limit: int,
    ) -> list[dict[str, Any]]: ...

    async def bulk_update(self, collection: str, updates: list[FieldUpdate]) -> BulkUpdateResult: ...

    async def close(self) -> None: ...


class InMemoryDocumentStore:
    """Process-local document store for the ``memory`` backend and tests."""

    def __init__(self, collections: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self.collections: dict[str, list[dict[str, Any]]] = collections or {}

    def coerce_id(self, document_id: str) -> str:
        if not isinstance(document_id, str) or not document_id.strip():
            raise RepositoryValidationError(f"invalid document id: {document_id!r}")
        return document_id

    async def find(
        self,
        collection: str,
        *,
        filter: dict[str, Any] | None = None,
        projection: dict[str, int] | None = None,
        limit: int,
    ) -> list[dict[str, Any]]:
        matched = [doc for doc in self.collections.get(collection, []) if _matches(doc, filter or {})]
        return [_project(doc, projection) for doc in matched[: max(0, limit)]]

    async def bulk_update(self, collection: str, updates: list[FieldUpdate]) -> BulkUpdateResult:
        result = BulkUpdateResult()
        documents = {str(doc.get("_id")): doc for doc in self.collections.get(collection, [])}
        for update in updates:
            doc = documents.get(str(update.document_id))
            if doc is None:
                continue
            if update.expected_element is None:
                result.matched_count += 1
                if doc.get(update.field) != update.value:
                    doc[update.field] = update.value
                    result.modified_count += 1
                continue

            values = doc.get(update.field)
            if not isinstance(values, list) or update.expected_element not in values:
                continue
            result.matched_count += 1
            index = values.index(update.expected_element)
            if values[index] != update.value:
                values[index] = update.value
                result.modified_count += 1
        return result

    async def close(self) -> None:
        return None


def _matches(doc: dict[str, Any], filter: dict[str, Any]) -> bool:
    for key, condition in filter.items():
        value = doc.get(key)
        if isinstance(condition, dict) and "$ne" in condition:
            if value == condition["$ne"]:
                return False
        elif value != condition:
            return False
    return True


def _project(doc: dict[str, Any], projection: dict[str, int] | None) -> dict[str, Any]:
    if not projection:
        return copy.deepcopy(doc)
    keys = {key for key, include in projection.items() if include}
    keys.add("_id")
    return {key: copy.deepcopy(value) for key, value in doc.items() if key in keys}
