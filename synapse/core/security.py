"""
Input sanitization, identifiers and rate limiting.
"""

import hashlib
import re
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from synapse.core.constants import ALLOWED_NOTE_TAGS, MAX_FILENAME_LENGTH, RATE_LIMIT_KEY
from synapse.core.exceptions import RateLimitError, SecurityError
from synapse.core.logging import get_logger

logger = get_logger(__name__)


def generate_analysis_id() -> str:
    """
    Generate a unique analysis ID.

    Returns:
        analysis_<epoch millis>_<9 random hex chars>
    """
    return f"analysis_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


def generate_key_id() -> str:
    """
    Generate an API key metadata ID.

    Returns:
        A random 8-byte hex string prefixed with 'key_'
    """
    return f"key_{secrets.token_hex(8)}"


def generate_event_id() -> str:
    """Generate an audit event ID."""
    return f"evt_{secrets.token_hex(12)}"


def generate_request_id() -> str:
    """
    Generate a unique request ID for tracing.

    Returns:
        A random 8-byte hex string prefixed with 'req_'
    """
    return f"req_{secrets.token_hex(8)}"


def hash_content(content: str) -> str:
    """
    Hash content for storage alongside a record.

    Args:
        content: The text to hash

    Returns:
        SHA-256 hex digest
    """
    return hashlib.sha256(content.encode()).hexdigest()


# =============================================================================
# Meeting notes sanitization
# =============================================================================

INJECTION_PATTERNS = [
    re.compile(r"ignore\s+(all\s+)?previous\s+instructions", re.IGNORECASE),
    re.compile(r"system\s*:\s*you\s+are", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"<\|.*?\|>"),
    re.compile(r"^\s*(assistant|human)\s*:", re.IGNORECASE | re.MULTILINE),
    re.compile(r"\{\{.*?\}\}", re.DOTALL),
    re.compile(r"<%.*?%>", re.DOTALL),
]

_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<\s*(/?)\s*([a-zA-Z][a-zA-Z0-9]*)\b[^<>]*?(/?)\s*>")
_SCHEME_RE = re.compile(r"\b(javascript|vbscript|data)\s*:", re.IGNORECASE)


def detect_prompt_injection(content: str) -> None:
    """
    Reject text that tries to steer the model.

    Raises:
        SecurityError: If a known injection pattern matches
    """
    for pattern in INJECTION_PATTERNS:
        if pattern.search(content):
            logger.warning(
                "Prompt injection detected",
                pattern=pattern.pattern,
                input_preview=content[:100],
            )
            raise SecurityError(
                "Potential prompt injection detected",
                details={"pattern": pattern.pattern},
            )


def _rewrite_tag(match: re.Match[str]) -> str:
    closing, name, self_closing = match.group(1), match.group(2).lower(), match.group(3)
    if name not in ALLOWED_NOTE_TAGS:
        return ""
    return f"<{closing}{name}{self_closing}>"


def sanitize_meeting_notes(content: str) -> str:
    """
    Strip markup that is unsafe to store or echo back.

    Keeps basic formatting tags without attributes, drops comments, script and
    style blocks, other tags and dangerous URI schemes. Only ever removes
    characters, so the result is never longer than the input.

    Args:
        content: Raw meeting notes

    Returns:
        Sanitized, trimmed notes
    """
    if not isinstance(content, str):
        raise SecurityError("Invalid input type - string required")

    sanitized = _COMMENT_RE.sub("", content)
    sanitized = _BLOCK_RE.sub("", sanitized)
    sanitized = _TAG_RE.sub(_rewrite_tag, sanitized)
    sanitized = _SCHEME_RE.sub("", sanitized)
    return sanitized.strip()


def sanitize_filename(name: str) -> str:
    """
    Sanitize an uploaded file name.

    Raises:
        SecurityError: If nothing usable remains
    """
    sanitized = re.sub(r'[<>:"/\\|?*\x00-\x1f]', "", name.strip())
    sanitized = sanitized.replace("..", "")
    sanitized = sanitized.lstrip(".")[:MAX_FILENAME_LENGTH]

    if not sanitized:
        raise SecurityError("Invalid filename after sanitization")

    return sanitized


def count_words(content: str) -> int:
    """Count whitespace separated words."""
    return len(content.split())


# =============================================================================
# Rate limiting
# =============================================================================


class CounterStore(Protocol):
    """Subset of the key-value store used by the rate limiter."""

    async def increment(self, key: str, amount: int = 1, ttl_seconds: Optional[int] = None) -> int: ...

    async def get(self, key: str) -> Optional[Any]: ...


@dataclass
class RateLimitStatus:
    """Outcome of a permitted rate limit check."""

    current: int
    limit: int
    remaining: int
    reset_at: datetime


class RateLimiter:
    """
    Fixed-window rate limiter backed by the key-value store.
    Counters live under ratelimit:<user>:<action>:<window start millis>.
    """

    def __init__(self, store: CounterStore) -> None:
        self.store = store

    async def check(
        self,
        identifier: str,
        action: str,
        limit: int,
        window_seconds: int,
    ) -> RateLimitStatus:
        """
        Count a request against the caller's window.

        Args:
            identifier: Unique identifier (e.g. account id)
            action: Action being limited (e.g. 'analysis')
            limit: Requests allowed per window
            window_seconds: Window length

        Returns:
            Status after counting this request

        Raises:
            RateLimitError: If the window is already full
        """
        window_ms = window_seconds * 1000
        now_ms = int(time.time() * 1000)
        window_start = (now_ms // window_ms) * window_ms
        reset_ms = window_start + window_ms
        key = RATE_LIMIT_KEY.format(user_id=identifier, action=action, window_start=window_start)

        current = int(await self.store.get(key) or 0)
        if current >= limit:
            retry_after = max(1, (reset_ms - now_ms) // 1000)
            logger.warning(
                "Rate limit exceeded",
                identifier=identifier,
                action=action,
                current=current,
                limit=limit,
            )
            raise RateLimitError(
                f"Rate limit exceeded for {action}: {current}/{limit} requests per window",
                retry_after=int(retry_after),
            )

        current = await self.store.increment(key, ttl_seconds=window_seconds)

        return RateLimitStatus(
            current=current,
            limit=limit,
            remaining=max(0, limit - current),
            reset_at=datetime.fromtimestamp(reset_ms / 1000, tz=timezone.utc),
        )
