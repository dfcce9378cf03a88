from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol


class PortalSessionError(RuntimeError):
    """
    Raised by a browsing port when a session primitive fails (create, navigate, closed session, ...).
    """


@dataclass(frozen=True)
class SessionInfo:
    id: int
    url: str = ""


@dataclass(frozen=True)
class ContextResult:
    """Outcome of running a script inside one content region (frame)."""

    frame_index: int
    doc_url: str = "(unknown)"
    value: Any = None
    error: Optional[str] = None


class BrowsingSessionPort(Protocol):
    """
    Host-provided browsing primitives. Any engine (Playwright, a remote-debugging client, ...)
    can back the remediation engine by implementing this.
    """

    async def list_sessions(self) -> list[SessionInfo]: ...

    async def get_session(self, session_id: int) -> Optional[SessionInfo]: ...

    async def open_session(self, url: str) -> SessionInfo: ...

    async def navigate(self, session_id: int, url: str) -> None: ...

    async def reload(self, session_id: int) -> None: ...

    async def deactivate(self, session_id: int) -> None: ...

    async def wait_for_load(self, session_id: int, timeout_ms: int) -> bool: ...

    async def close_session(self, session_id: int) -> None: ...

    async def run_in_context(
        self, session_id: int, script: str, arg: Any = None, *, all_frames: bool = True
    ) -> list[ContextResult]: ...

    async def run_in_frame(self, session_id: int, frame_index: int, script: str, arg: Any = None) -> ContextResult: ...

    async def capture_debug(self, session_id: int, name_prefix: str) -> None: ...
