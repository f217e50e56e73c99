"""Message shapes exchanged across the frame boundary and on the page bus."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ProbeRequest(BaseModel):
    kind: Literal["probe-request"] = "probe-request"


class ProbeResponse(BaseModel):
    """Sent at most once per request, read from the sub-context's own state."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["probe-response"] = "probe-response"
    ready_state: str = Field(alias="readyState")
    width: float | None = None  # None: indeterminate (auto)
    height: float | None = None


class WriteNotification(BaseModel):
    """A page script's document.write payload, rerouted onto the message bus."""

    kind: Literal["document-write"] = "document-write"
    markup: str
