from .detector import FieldDetector
from .heuristics import FieldHeuristics
from .injector import CredentialInjector
from .keepalive import KeepaliveClassifier
from .orchestrator import CreatedSessionRegistry, SessionOrchestrator
from .port import BrowsingSessionPort, ContextResult, PortalSessionError, SessionInfo

__all__ = [
    "BrowsingSessionPort",
    "ContextResult",
    "CreatedSessionRegistry",
    "CredentialInjector",
    "FieldDetector",
    "FieldHeuristics",
    "KeepaliveClassifier",
    "PortalSessionError",
    "SessionInfo",
    "SessionOrchestrator",
]
