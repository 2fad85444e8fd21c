from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RewriteEventIn(BaseModel):
    """Rewrite beacon sent by browsers; fields arrive untyped and are sanitised by the route."""

    model_config = ConfigDict(populate_by_name=True)

    original: Any = None
    resolved: Any = None
    reason: Any = None
    entity_kind: Any = Field(default=None, alias="entityKind")
    frontend_origin: Any = Field(default=None, alias="frontendOrigin")
    backend_origin: Any = Field(default=None, alias="backendOrigin")
    timestamp: Any = None


class RewriteEvent(BaseModel):
    original: str
    resolved: str
    reason: str
    entity_kind: str
    frontend_origin: str
    backend_origin: str
    timestamp: int


class RewriteEventAck(BaseModel):
    success: bool = True
