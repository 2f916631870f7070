"""
Transcript Store

Rolling, in-memory history of test prompt exchanges, kept per profile.
At most three exchanges (six messages) are held, oldest first; a failed
call clears the messages and keeps only the error summary.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

MAX_EXCHANGES = 3


@dataclass
class TranscriptMessage:
    role: str  # "user" | "assistant"
    text: str
    truncated: bool = False
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "text": self.text,
            "truncated": self.truncated,
            "timestamp": self.timestamp,
        }


@dataclass
class Transcript:
    """Snapshot handed out with every test prompt result."""
    messages: list[TranscriptMessage] = field(default_factory=list)
    status: str = "ok"  # "ok" | "error"
    latency_ms: Optional[int] = None
    total_time_ms: Optional[int] = None
    error_code: Optional[str] = None
    remediation: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "status": self.status,
            "latencyMs": self.latency_ms,
            "totalTimeMs": self.total_time_ms,
            "errorCode": self.error_code,
            "remediation": self.remediation,
        }


@dataclass
class _Entry:
    exchanges: deque
    transcript: Transcript


class TranscriptStore:
    """Per-profile bounded transcripts."""

    def __init__(self, max_exchanges: int = MAX_EXCHANGES):
        self.max_exchanges = max_exchanges
        self._entries: dict[str, _Entry] = {}

    def get(self, profile_id: str) -> Optional[Transcript]:
        entry = self._entries.get(profile_id)
        return _copy(entry.transcript) if entry else None

    def record_success(
        self,
        profile_id: str,
        user: TranscriptMessage,
        assistant: TranscriptMessage,
        latency_ms: int,
        total_time_ms: int,
    ) -> Transcript:
        """Append an exchange, evicting the oldest once the window is full."""
        entry = self._entries.get(profile_id)
        exchanges = entry.exchanges if entry else deque(maxlen=self.max_exchanges)
        exchanges.append((user, assistant))

        transcript = Transcript(
            messages=[message for pair in exchanges for message in pair],
            status="ok",
            latency_ms=latency_ms,
            total_time_ms=total_time_ms,
        )
        self._entries[profile_id] = _Entry(exchanges, transcript)
        return _copy(transcript)

    def record_error(
        self,
        profile_id: str,
        error_code: str,
        remediation: Optional[str],
        total_time_ms: int,
    ) -> Transcript:
        """Drop all messages and keep only the error summary."""
        transcript = Transcript(
            messages=[],
            status="error",
            latency_ms=None,
            total_time_ms=total_time_ms,
            error_code=error_code,
            remediation=remediation,
        )
        self._entries[profile_id] = _Entry(deque(maxlen=self.max_exchanges), transcript)
        return _copy(transcript)

    def clear(self, profile_id: str) -> None:
        self._entries.pop(profile_id, None)

    def clear_all(self) -> None:
        self._entries.clear()

    def history_depth(self, profile_id: str) -> int:
        """Number of exchanges currently held for a profile."""
        entry = self._entries.get(profile_id)
        return len(entry.exchanges) if entry else 0


def _copy(transcript: Transcript) -> Transcript:
    return Transcript(
        messages=list(transcript.messages),
        status=transcript.status,
        latency_ms=transcript.latency_ms,
        total_time_ms=transcript.total_time_ms,
        error_code=transcript.error_code,
        remediation=transcript.remediation,
    )
