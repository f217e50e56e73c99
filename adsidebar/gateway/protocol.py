from __future__ import annotations

import json
import uuid
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class SessionOpenParams(BaseModel):
    session_id: str
    location: str = "about:blank"
    markup: str = ""  # initial body markup
    selectors: list[str] = Field(default_factory=list)  # element-hiding rules
    failing_sources: list[str] = Field(default_factory=list)  # headless loader errors


class SessionParams(BaseModel):
    session_id: str


class PolicyAdmitParams(BaseModel):
    session_id: str
    resource_kind: str
    source: str
    tag_kind: str | None = None

    @field_validator("resource_kind", mode="before")
    @classmethod
    def _normalize_kind(cls, v: Any) -> str:
        if not isinstance(v, str):
            msg = f"resource_kind must be a string (got {type(v).__name__})"
            raise ValueError(msg)
        v = v.strip().upper()
        if not v:
            raise ValueError("resource_kind must not be empty")
        return v


class PageWriteParams(BaseModel):
    session_id: str
    markup: str


class PageErrorParams(BaseModel):
    session_id: str
    detail: str = ""


class ConfigUpdateParams(BaseModel):
    enabled: bool | None = None
    autohide_seconds: int | None = Field(None, ge=0)
    ad_scaling: bool | None = None


class RPCRequest(BaseModel):
    """Generic RPC request. method determines which params to expect."""

    type: Literal["request"] = "request"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class RPCResponse(BaseModel):
    type: Literal["response"] = "response"
    id: str
    data: dict[str, Any] = Field(default_factory=dict)


class CompletionData(BaseModel):
    session_id: str
    region_count: int
    ever_displayed: bool


class RPCNotification(BaseModel):
    """Server-initiated push; carries no request id."""

    type: Literal["notification"] = "notification"
    method: Literal["sidebar.complete"] = "sidebar.complete"
    data: CompletionData


class RPCErrorData(BaseModel):
    code: str
    message: str


class RPCError(BaseModel):
    type: Literal["error"] = "error"
    id: str
    error: RPCErrorData


def parse_rpc_request(raw: str) -> RPCRequest:
    """Parse a raw JSON string into an RPCRequest.

    Raises GatewayError(code="PARSE_ERROR") on invalid JSON or schema mismatch.
    """
    from adsidebar.infra.errors import GatewayError

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise GatewayError(f"Invalid JSON: {e}", code="PARSE_ERROR") from e
    try:
        return RPCRequest.model_validate(data)
    except Exception as e:
        raise GatewayError(f"Invalid RPC request: {e}", code="PARSE_ERROR") from e
