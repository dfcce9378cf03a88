from __future__ import annotations

import logging
from typing import Optional

from ..models import DetectionResult, FrameDetection, InputInfo
from . import scripts
from .heuristics import FieldHeuristics
from .port import BrowsingSessionPort, ContextResult, SessionInfo


logger = logging.getLogger(__name__)

# Diagnostics only; detection itself always considers every input.
MAX_REPORTED_INPUTS = 40


def parse_inventory(result: ContextResult) -> tuple[str, list[InputInfo]]:
    """
    Turn a COLLECT_INPUTS result into (doc_url, inputs). List position == DOM input index.
    """
    value = result.value if isinstance(result.value, dict) else {}
    doc_url = str(value.get("docUrl") or result.doc_url or "(unknown)")
    inputs: list[InputInfo] = []
    for raw in value.get("inputs") or []:
        if not isinstance(raw, dict):
            continue
        inputs.append(
            InputInfo(
                name=str(raw.get("name") or ""),
                id=str(raw.get("id") or ""),
                type=str(raw.get("type") or "").lower(),
                placeholder=str(raw.get("placeholder") or ""),
            )
        )
    return doc_url, inputs


class FieldDetector:
    """
    Scan a session's page and every nested frame for a username/password pair.
    """

    def __init__(self, port: BrowsingSessionPort, heuristics: Optional[FieldHeuristics] = None) -> None:
        self.port = port
        self.heuristics = heuristics or FieldHeuristics()

    async def detect_fields(self, session: SessionInfo) -> DetectionResult:
        try:
            results = await self.port.run_in_context(session.id, scripts.COLLECT_INPUTS, all_frames=True)
        except Exception:
            logger.warning("Field detection failed for session=%s", session.id, exc_info=True)
            return DetectionResult(found=False, frames=[])

        frames = [self._detect_in_frame(r) for r in results]
        return DetectionResult(found=any(f.found for f in frames), frames=frames)

    def _detect_in_frame(self, result: ContextResult) -> FrameDetection:
        if result.error:
            return FrameDetection(doc_url=result.doc_url, found=False, error=result.error)
        try:
            doc_url, inputs = parse_inventory(result)
            h = self.heuristics
            has_pass = any(h.is_password(i) for i in inputs)
            # Any input counts, password-typed ones included, as long as its metadata matches.
            has_user = any(h.is_likely_username(i) for i in inputs)
            return FrameDetection(
                doc_url=doc_url,
                found=has_pass and has_user,
                inputs=inputs[:MAX_REPORTED_INPUTS],
            )
        except Exception as e:
            return FrameDetection(doc_url=result.doc_url, found=False, error=str(e))
