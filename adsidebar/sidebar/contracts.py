"""Sidebar-side shared contract types.

AdmissionRequest is what the policy gate emits; classify() turns it into
the Admission variant exactly once, and every later stage matches on the
variant instead of re-inspecting resource kind strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from adsidebar.infra.errors import AdmissionError

logger = structlog.get_logger()

_TAG_FOR_KIND = {
    "SUBDOCUMENT": "iframe",
    "IMAGE": "img",
}


@dataclass(frozen=True)
class AdmissionRequest:
    """A blocked resource reported by the policy gate. Consumed once."""

    resource_kind: str
    tag_kind: str
    source: str

    @classmethod
    def from_policy(
        cls, resource_kind: str, source: str, tag_kind: str | None = None
    ) -> AdmissionRequest:
        kind = resource_kind.strip().upper()
        if not kind:
            raise AdmissionError("resource_kind must not be empty", code="INVALID_ADMISSION")
        tag = (tag_kind or _TAG_FOR_KIND.get(kind, kind)).strip().lower()
        return cls(resource_kind=kind, tag_kind=tag, source=source)


@dataclass(frozen=True)
class ScriptAdmission:
    source: str


@dataclass(frozen=True)
class FrameAdmission:
    source: str


@dataclass(frozen=True)
class ImageAdmission:
    source: str


@dataclass(frozen=True)
class OtherAdmission:
    source: str
    tag: str


Admission = ScriptAdmission | FrameAdmission | ImageAdmission | OtherAdmission


def classify(request: AdmissionRequest) -> Admission:
    match request.resource_kind:
        case "SCRIPT":
            return ScriptAdmission(source=request.source)
        case "SUBDOCUMENT":
            return FrameAdmission(source=request.source)
        case "IMAGE":
            return ImageAdmission(source=request.source)
        case _:
            return OtherAdmission(source=request.source, tag=request.tag_kind)


class AnomalyKind(StrEnum):
    """Locally resolved page-level failures. None of them reach the host."""

    resource_load_failure = "resource_load_failure"
    probe_timeout = "probe_timeout"
    budget_exhausted = "budget_exhausted"
    malformed_fragment = "malformed_fragment"


@dataclass(frozen=True)
class Anomaly:
    kind: AnomalyKind
    detail: str = ""
    script: bool = False  # True when a page script failed to load or run


@dataclass
class PageAnomalies:
    """Per-session anomaly log."""

    entries: list[Anomaly] = field(default_factory=list)

    def record(self, kind: AnomalyKind, detail: str = "", *, script: bool = False) -> Anomaly:
        anomaly = Anomaly(kind=kind, detail=detail, script=script)
        self.entries.append(anomaly)
        logger.info("page_anomaly", kind=kind.value, detail=detail, script=script)
        return anomaly

    @property
    def script_error(self) -> bool:
        return any(a.script for a in self.entries)

    def count(self, kind: AnomalyKind) -> int:
        return sum(1 for a in self.entries if a.kind == kind)
