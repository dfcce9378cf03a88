from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..config import HeuristicsConfig
from ..models import InputInfo


@dataclass(frozen=True)
class FieldHeuristics:
    """
    Captive portals are hand-rolled HTML; these patterns are a best-effort policy and will miss
    some pages. Keep every matching rule here so it can be overridden from config.
    """

    username_pattern: re.Pattern[str] = re.compile(r"user|login|email|username|id", re.I)
    username_types: frozenset[str] = frozenset({"text", "email", ""})
    password_type: str = "password"
    keepalive_url_token: str = "keepalive"
    keepalive_text_pattern: re.Pattern[str] = field(
        default=re.compile(r"keepalive|authentication keep-?alive|authentication refresh", re.I)
    )

    @classmethod
    def from_config(cls, cfg: Optional[HeuristicsConfig]) -> "FieldHeuristics":
        if cfg is None:
            return cls()
        return cls(
            username_pattern=re.compile(cfg.username_pattern, re.I),
            username_types=frozenset(t.strip().lower() for t in cfg.username_types),
            keepalive_url_token=cfg.keepalive_url_token.strip().lower(),
            keepalive_text_pattern=re.compile(cfg.keepalive_text_pattern, re.I),
        )

    # --- input predicates ---

    def is_password(self, info: InputInfo) -> bool:
        return (info.type or "").lower() == self.password_type

    def is_typeable(self, info: InputInfo) -> bool:
        return (info.type or "").lower() in self.username_types

    def matches_username_meta(self, info: InputInfo) -> bool:
        meta = f"{info.name} {info.id} {info.placeholder}"
        return bool(self.username_pattern.search(meta))

    def is_likely_username(self, info: InputInfo) -> bool:
        return self.matches_username_meta(info) or self.is_typeable(info)

    def pick_password(self, inputs: Sequence[InputInfo]) -> Optional[int]:
        for idx, info in enumerate(inputs):
            if self.is_password(info):
                return idx
        return None

    def pick_username(self, inputs: Sequence[InputInfo]) -> Optional[int]:
        """
        First input whose name/id/placeholder looks like a username and that accepts text; then the
        first text-like input; then the first non-password input.
        """
        candidates = [(i, info) for i, info in enumerate(inputs) if not self.is_password(info)]
        for idx, info in candidates:
            if self.matches_username_meta(info) and self.is_typeable(info):
                return idx
        for idx, info in candidates:
            if self.is_typeable(info):
                return idx
        return candidates[0][0] if candidates else None

    # --- keepalive ---

    def url_looks_keepalive(self, url: str) -> bool:
        return bool(self.keepalive_url_token) and self.keepalive_url_token in (url or "").lower()

    def text_looks_keepalive(self, text: str) -> bool:
        return bool(self.keepalive_text_pattern.search(text or ""))
