"""Sidebar pipeline: admission, relocation, readiness detection and sessions."""

from adsidebar.sidebar.admission import NodeAdmissionQueue
from adsidebar.sidebar.contracts import (
    Admission,
    AdmissionRequest,
    Anomaly,
    AnomalyKind,
    FrameAdmission,
    ImageAdmission,
    OtherAdmission,
    PageAnomalies,
    ScriptAdmission,
    classify,
)
from adsidebar.sidebar.monitor import LoadingComplete, MonitorPhase, ReadinessMonitor
from adsidebar.sidebar.probe import CrossBoundaryProbe, FrameResponder, FrameTransport
from adsidebar.sidebar.registry import SessionRegistry
from adsidebar.sidebar.relocator import ContentRelocator, ManagedNode
from adsidebar.sidebar.session import HostNotification, SessionPhase, SidebarSession
from adsidebar.sidebar.watcher import DynamicChangeWatcher
from adsidebar.sidebar.write_bridge import WriteBridge

__all__ = [
    "Admission",
    "AdmissionRequest",
    "Anomaly",
    "AnomalyKind",
    "ContentRelocator",
    "CrossBoundaryProbe",
    "DynamicChangeWatcher",
    "FrameAdmission",
    "FrameResponder",
    "FrameTransport",
    "HostNotification",
    "ImageAdmission",
    "LoadingComplete",
    "ManagedNode",
    "MonitorPhase",
    "NodeAdmissionQueue",
    "OtherAdmission",
    "PageAnomalies",
    "ReadinessMonitor",
    "ScriptAdmission",
    "SessionPhase",
    "SessionRegistry",
    "SidebarSession",
    "WriteBridge",
    "classify",
]
