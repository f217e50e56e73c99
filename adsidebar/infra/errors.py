"""Custom exception hierarchy for AdSidebar.

All application-specific exceptions inherit from AdSidebarError,
which carries an error code for RPC error frame mapping.

Page-level failures (resource load errors, silent frames, exhausted wait
budget, unparseable write payloads) are not exceptions: they are recorded
as anomalies on the session and resolved locally.
"""

from __future__ import annotations


class AdSidebarError(Exception):
    """Base exception for all AdSidebar errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class GatewayError(AdSidebarError):
    """Errors in the host gateway / WebSocket layer."""

    def __init__(self, message: str, *, code: str = "GATEWAY_ERROR") -> None:
        super().__init__(message, code=code)


class SessionError(AdSidebarError):
    """Errors in session lookup and lifecycle."""

    def __init__(self, message: str, *, code: str = "SESSION_ERROR") -> None:
        super().__init__(message, code=code)


class SessionNotFoundError(SessionError):
    """Raised when a host command names a session that is not open."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' is not open", code="SESSION_NOT_FOUND")
        self.session_id = session_id


class SessionExistsError(SessionError):
    """Raised when opening a session id that is already registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' is already open", code="SESSION_EXISTS")
        self.session_id = session_id


class AdmissionError(AdSidebarError):
    """Malformed admission requests from the policy gate."""

    def __init__(self, message: str, *, code: str = "ADMISSION_ERROR") -> None:
        super().__init__(message, code=code)
