from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from image_governance.schemas.governance import PreviewChange
from image_governance.services.scanner import ARRAY_SLOT_SUFFIX, EntityFieldDescriptor
from image_governance.services.store import DocumentStore, FieldUpdate


class ExecutionBuildError(Exception):
    """Raised when a preview change cannot be turned into an update."""


class UpdateStrategy(Protocol):
    entity_kind: str
    collection: str

    def build(self, change: PreviewChange, store: DocumentStore) -> FieldUpdate: ...


@dataclass(slots=True, frozen=True)
class ScalarFieldStrategy:
    entity_kind: str
    collection: str
    fields: tuple[str, ...]

    def build(self, change: PreviewChange, store: DocumentStore) -> FieldUpdate:
        if change.field_path not in self.fields:
            raise ExecutionBuildError(f"field {change.field_path!r} is not governed for {self.entity_kind}")
        return FieldUpdate(
            document_id=store.coerce_id(change.document_id),
            field=change.field_path,
            value=change.resolved_value,
        )


@dataclass(slots=True, frozen=True)
class ArrayElementStrategy:
    entity_kind: str
    collection: str
    fields: tuple[str, ...]

    def build(self, change: PreviewChange, store: DocumentStore) -> FieldUpdate:
        field = change.field_path.removesuffix(ARRAY_SLOT_SUFFIX)
        if field not in self.fields:
            raise ExecutionBuildError(f"field {change.field_path!r} is not governed for {self.entity_kind}")
        return FieldUpdate(
            document_id=store.coerce_id(change.document_id),
            field=field,
            value=change.resolved_value,
            expected_element=change.original_value,
        )


def strategy_for(descriptor: EntityFieldDescriptor) -> UpdateStrategy:
    strategy_cls = ArrayElementStrategy if descriptor.array_field else ScalarFieldStrategy
    return strategy_cls(
        entity_kind=descriptor.entity_kind,
        collection=descriptor.collection,
        fields=descriptor.fields,
    )


def build_strategy_registry(descriptors: tuple[EntityFieldDescriptor, ...]) -> dict[str, UpdateStrategy]:
    return {descriptor.entity_kind: strategy_for(descriptor) for descriptor in descriptors}
