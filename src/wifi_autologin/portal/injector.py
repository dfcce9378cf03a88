from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from ..config import PortalConfig
from ..models import FrameInjection, InjectionResult, InputInfo, Outcome
from . import scripts
from .detector import MAX_REPORTED_INPUTS, parse_inventory
from .heuristics import FieldHeuristics
from .port import BrowsingSessionPort, ContextResult, SessionInfo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FillPlan:
    user_index: Optional[int]
    pass_index: Optional[int]
    source: str  # "configured" | "heuristic"


def _find_by_name_or_id(inputs: Sequence[InputInfo], hint: str) -> Optional[int]:
    if not hint:
        return None
    for idx, info in enumerate(inputs):
        if info.name == hint or info.id == hint:
            return idx
    return None


class CredentialInjector:
    """
    Fill the login form and submit it, trying each content region in order until one submits.
    """

    def __init__(self, port: BrowsingSessionPort, heuristics: Optional[FieldHeuristics] = None) -> None:
        self.port = port
        self.heuristics = heuristics or FieldHeuristics()

    def configured_plan(self, inputs: Sequence[InputInfo], config: PortalConfig) -> Optional[FillPlan]:
        if not (config.user_field or config.pass_field):
            return None
        user_idx = _find_by_name_or_id(inputs, config.user_field)
        pass_idx = _find_by_name_or_id(inputs, config.pass_field)
        if user_idx is None and pass_idx is None:
            return None
        return FillPlan(user_index=user_idx, pass_index=pass_idx, source="configured")

    def heuristic_plan(self, inputs: Sequence[InputInfo]) -> Optional[FillPlan]:
        pass_idx = self.heuristics.pick_password(inputs)
        user_idx = self.heuristics.pick_username(inputs)
        if pass_idx is None or user_idx is None:
            return None
        return FillPlan(user_index=user_idx, pass_index=pass_idx, source="heuristic")

    async def inject(self, session: SessionInfo, config: PortalConfig) -> InjectionResult:
        results = await self.port.run_in_context(session.id, scripts.COLLECT_INPUTS, all_frames=True)

        frames: list[FrameInjection] = []
        attempted = False
        for result in results:
            outcome = await self._inject_in_frame(session, result, config)
            if outcome.ok:
                logger.info(
                    "Submitted login form in frame=%d (%s) via %s",
                    result.frame_index,
                    outcome.doc_url,
                    outcome.method,
                )
                return outcome
            entry = outcome.frames[0] if outcome.frames else FrameInjection(frame_index=result.frame_index)
            if outcome.error is Outcome.INJECTION_FAILED:
                attempted = True
            frames.append(entry)

        error = Outcome.INJECTION_FAILED if attempted else Outcome.FIELDS_NOT_FOUND
        return InjectionResult.failure(error, frames=frames)

    async def _inject_in_frame(self, session: SessionInfo, result: ContextResult, config: PortalConfig) -> InjectionResult:
        idx = result.frame_index
        if result.error:
            return InjectionResult.failure(
                Outcome.FIELDS_NOT_FOUND,
                frames=[FrameInjection(frame_index=idx, doc_url=result.doc_url, error=f"doc_error:{result.error}")],
            )

        doc_url, inputs = parse_inventory(result)
        last_error = "fields_not_found"

        # Explicit selectors first; a configured field without a usable form falls through to heuristics.
        for plan in (self.configured_plan(inputs, config), self.heuristic_plan(inputs)):
            if plan is None:
                continue
            submitted = await self.port.run_in_frame(session.id, idx, scripts.FILL_AND_SUBMIT, self._plan_arg(plan, config))
            value = submitted.value if isinstance(submitted.value, dict) else {}
            if not submitted.error and value.get("ok"):
                return InjectionResult(
                    ok=True,
                    frame_index=idx,
                    doc_url=doc_url,
                    method=value.get("method") or "click",
                )
            last_error = submitted.error or str(value.get("error") or "submit_failed")
            logger.debug("Fill (%s) failed in frame=%d: %s", plan.source, idx, last_error)

        # A fill that reached the form and still failed is an injection failure, not a miss.
        error = Outcome.FIELDS_NOT_FOUND if last_error == "fields_not_found" else Outcome.INJECTION_FAILED
        return InjectionResult.failure(
            error,
            frames=[
                FrameInjection(
                    frame_index=idx,
                    doc_url=doc_url,
                    error=last_error,
                    inputs=inputs[:MAX_REPORTED_INPUTS],
                )
            ],
            inputs=inputs[:MAX_REPORTED_INPUTS],
        )

    def _plan_arg(self, plan: FillPlan, config: PortalConfig) -> dict:
        return {
            "userIndex": plan.user_index,
            "passIndex": plan.pass_index,
            "username": config.username,
            "password": config.password,
            "extraFields": dict(config.extra_fields),
        }
