# ==============================
# Security & Redaction
# ==============================
"""
Security redaction helpers.

Goals:
- Scrub secrets/PII from anything that might be logged, traced or shown as status text.
- Keep it deterministic and testable.
- Configurable patterns via Settings.logging.redact_patterns (and defaults here).

Scope:
- Do NOT attempt "perfect PII detection".
- Provide practical regex-based redaction + key-based redaction (e.g., password, token).
- Deploy requests carry an owner e-mail; it is masked by default.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Pattern

from core.config.schema import Settings

DEFAULT_MASK = "[REDACTED]"

DEFAULT_KEY_HINTS: List[str] = [
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "bearer",
    "cookie",
    "user_email",
    "useremail",
]

DEFAULT_PATTERNS: List[str] = [
    r"(?i)authorization\s*:\s*bearer\s+\S+",
    r"(?i)(?:api[_-]?key|token)\s*[:=]\s*\S+",
    r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}",  # e-mail
]


def _compile(patterns: Iterable[str]) -> List[Pattern[str]]:
    compiled: List[Pattern[str]] = []
    for p in patterns:
        try:
            compiled.append(re.compile(p))
        except re.error:
            # ignore invalid patterns to avoid runtime failures
            continue
    return compiled


class SecurityRedactor:
    def __init__(
        self,
        *,
        patterns: List[str] | None = None,
        key_hints: List[str] | None = None,
        mask: str = DEFAULT_MASK,
        enabled: bool = True,
    ) -> None:
        self.mask = mask
        self.enabled = enabled
        self.key_hints = [k.lower() for k in (key_hints or DEFAULT_KEY_HINTS)]
        self.patterns = _compile(patterns or DEFAULT_PATTERNS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecurityRedactor":
        extra = list(settings.logging.redact_patterns)
        return cls(patterns=DEFAULT_PATTERNS + extra, enabled=settings.logging.redact)

    def redact_text(self, text: str) -> str:
        if not self.enabled:
            return text
        out = text
        for p in self.patterns:
            out = p.sub(self.mask, out)
        return out

    def sanitize(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        if not self.enabled:
            return dict(obj)
        return self._redact_any(obj)  # type: ignore[return-value]

    def _redact_any(self, x: Any) -> Any:
        if x is None:
            return None
        if isinstance(x, str):
            return self.redact_text(x)
        if isinstance(x, (int, float, bool)):
            return x
        if isinstance(x, (list, tuple)):
            return [self._redact_any(i) for i in x]
        if isinstance(x, dict):
            out: Dict[str, Any] = {}
            for k, v in x.items():
                ks = str(k).lower()
                if any(h in ks for h in self.key_hints):
                    out[k] = self.mask
                else:
                    out[k] = self._redact_any(v)
            return out
        # fallback: string-ify then redact
        return self.redact_text(str(x))
