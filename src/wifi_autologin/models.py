from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    """
    Result of one remediation cycle (or one orchestrator run).

    `logged_in` and `already_up` are the only successful outcomes; everything else is recovered
    locally by the scheduler and folded into the backoff state.
    """

    LOGGED_IN = "logged_in"
    ALREADY_UP = "already_up"
    LOCKED = "locked"
    IN_FLIGHT = "in_flight"
    KEEPALIVE_SUPPRESSED = "keepalive_suppressed"
    CONNECTIVITY_NOT_RESTORED = "connectivity_not_restored"
    NO_PORTAL_SESSION = "no_portal_session"
    FIELDS_NOT_FOUND = "fields_not_found_in_all_frames"
    INJECTION_FAILED = "injection_failed"
    SESSION_CREATE_FAILED = "session_create_failed"
    INTERNAL_ERROR = "internal_error"


SUCCESS_OUTCOMES = frozenset({Outcome.LOGGED_IN, Outcome.ALREADY_UP})


class InputInfo(BaseModel):
    name: str = ""
    id: str = ""
    type: str = ""
    placeholder: str = ""


class FrameDetection(BaseModel):
    doc_url: str = "(unknown)"
    found: bool = False
    inputs: list[InputInfo] = Field(default_factory=list)
    error: Optional[str] = None


class DetectionResult(BaseModel):
    found: bool = False
    frames: list[FrameDetection] = Field(default_factory=list)


class FrameInjection(BaseModel):
    """Per-region diagnostic entry, kept for logs only."""

    frame_index: int
    doc_url: str = "(unknown)"
    ok: bool = False
    error: Optional[str] = None
    inputs: list[InputInfo] = Field(default_factory=list)


class InjectionResult(BaseModel):
    ok: bool
    error: Optional[Outcome] = None
    detail: Optional[str] = None

    # Success details
    frame_index: Optional[int] = None
    doc_url: Optional[str] = None
    method: Optional[Literal["click", "native"]] = None

    # Diagnostics
    inputs: list[InputInfo] = Field(default_factory=list)
    frames: list[Any] = Field(default_factory=list)

    # Engine-created session used for this attempt (eligible for cleanup).
    used_session_id: Optional[int] = None

    @classmethod
    def failure(cls, error: Outcome, detail: Optional[str] = None, **kwargs: Any) -> "InjectionResult":
        return cls(ok=False, error=error, detail=detail, **kwargs)


class RemediationResult(BaseModel):
    outcome: Outcome
    origin: str = ""
    injection: Optional[InjectionResult] = None

    @property
    def ok(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES
