from __future__ import annotations

import logging
from typing import Optional

from . import scripts
from .heuristics import FieldHeuristics
from .port import BrowsingSessionPort, SessionInfo


logger = logging.getLogger(__name__)


class KeepaliveClassifier:
    """
    Tell a portal's session-refresh ("keepalive") page apart from a real login page.

    Only used to keep backoff from escalating; it never blocks remediation on its own.
    """

    def __init__(self, port: BrowsingSessionPort, heuristics: Optional[FieldHeuristics] = None) -> None:
        self.port = port
        self.heuristics = heuristics or FieldHeuristics()

    async def is_keepalive(self, session: Optional[SessionInfo]) -> bool:
        if session is None:
            return False
        if self.heuristics.url_looks_keepalive(session.url):
            return True
        try:
            results = await self.port.run_in_context(session.id, scripts.BODY_TEXT, all_frames=False)
        except Exception:
            logger.debug("Keepalive text check failed for session=%s", session.id, exc_info=True)
            return False
        if not results or results[0].error:
            return False
        text = results[0].value if isinstance(results[0].value, str) else ""
        return self.heuristics.text_looks_keepalive(text)
