from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace

from image_governance.core.urls import normalize
from image_governance.schemas.governance import PreviewChange, PreviewResult, PreviewSummary
from image_governance.services.store import DocumentStore, RepositoryError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ARRAY_SLOT_SUFFIX = "[]"


@dataclass(slots=True, frozen=True)
class EntityFieldDescriptor:
    entity_kind: str
    collection: str
    fields: tuple[str, ...]
    default_directory: str
    array_field: bool = False
    skip_null: bool = False

    @property
    def query_filter(self) -> dict[str, Any]:
        if not self.skip_null:
            return {}
        return {name: {"$ne": None} for name in self.fields}

    @property
    def projection(self) -> dict[str, int]:
        return {name: 1 for name in self.fields}

    def field_path(self, name: str) -> str:
        return f"{name}{ARRAY_SLOT_SUFFIX}" if self.array_field else name


DEFAULT_DESCRIPTORS: tuple[EntityFieldDescriptor, ...] = (
    EntityFieldDescriptor(
        entity_kind="record",
        collection="records",
        fields=("imageUrl", "thumbnailUrl"),
        default_directory="analysis",
    ),
    EntityFieldDescriptor(
        entity_kind="post",
        collection="community_posts",
        fields=("images",),
        default_directory="community",
        array_field=True,
    ),
    EntityFieldDescriptor(
        entity_kind="pet",
        collection="pets",
        fields=("avatar",),
        default_directory="avatars",
        skip_null=True,
    ),
    EntityFieldDescriptor(
        entity_kind="user",
        collection="users",
        fields=("avatar",),
        default_directory="avatars",
        skip_null=True,
    ),
)


def epoch_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


class CandidateScanner:
    def __init__(
        self,
        store: DocumentStore,
        *,
        canonical_origin: str,
        descriptors: tuple[EntityFieldDescriptor, ...] = DEFAULT_DESCRIPTORS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.canonical_origin = canonical_origin
        self.descriptors = descriptors
        self._clock = clock

    async def scan(self, limit_per_entity_kind: int) -> PreviewResult:
        started_at = epoch_ms(self._clock)
        summary = PreviewSummary()
        changes: list[PreviewChange] = []
        skipped: list[str] = []

        with tracer.start_as_current_span("governance.scan") as span:
            span.set_attribute("governance.limit_per_entity_kind", limit_per_entity_kind)
            for descriptor in self.descriptors:
                try:
                    documents = await self.store.find(
                        descriptor.collection,
                        filter=descriptor.query_filter,
                        projection=descriptor.projection,
                        limit=limit_per_entity_kind,
                    )
                except RepositoryError:
                    logger.exception("scan skipped entity kind=%s", descriptor.entity_kind)
                    skipped.append(descriptor.entity_kind)
                    continue

                for document in documents:
                    for change in self._changes_for(descriptor, document):
                        changes.append(change)
                        summary.total_candidates += 1
                        summary.by_entity_kind[change.entity_kind] = (
                            summary.by_entity_kind.get(change.entity_kind, 0) + 1
                        )
                        reason = change.reason_code.value
                        summary.by_reason[reason] = summary.by_reason.get(reason, 0) + 1
            span.set_attribute("governance.total_candidates", summary.total_candidates)

        finished_at = epoch_ms(self._clock)
        if skipped:
            logger.warning("scan finished with skipped entity kinds: %s", ", ".join(skipped))
        return PreviewResult(
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=finished_at - started_at,
            summary=summary,
            sample_changes=changes,
            skipped_entity_kinds=skipped,
        )

    def _changes_for(self, descriptor: EntityFieldDescriptor, document: dict[str, Any]) -> Iterator[PreviewChange]:
        document_id = str(document.get("_id"))
        for name, raw in _field_values(descriptor, document):
            outcome = normalize(raw, descriptor.default_directory, self.canonical_origin)
            if not outcome.changed:
                continue
            yield PreviewChange(
                entity_kind=descriptor.entity_kind,
                document_id=document_id,
                field_path=descriptor.field_path(name),
                original_value=raw,
                resolved_value=outcome.resolved_value,
                reason_code=outcome.reason_code,
            )


def _field_values(descriptor: EntityFieldDescriptor, document: dict[str, Any]) -> Iterator[tuple[str, str]]:
    for name in descriptor.fields:
        value = document.get(name)
        if descriptor.array_field:
            items = value if isinstance(value, list) else []
        else:
            items = [value]
        for item in items:
            if isinstance(item, str) and item:
                yield name, item
