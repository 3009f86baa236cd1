"""Thread-safe in-memory application metrics collector."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field


@dataclass
class MetricsCollector:
    """Process-local counters and latency samples behind one ``threading.Lock``.

    Latency samples are capped at ``_MAX_LATENCY_SAMPLES``; on overflow the
    oldest half is dropped.
    """

    _MAX_LATENCY_SAMPLES: int = field(default=10_000, repr=False)

    total_requests: int = field(default=0, init=False)
    status_codes: dict[int, int] = field(default_factory=dict, init=False)
    facility_searches: int = field(default=0, init=False)
    sessions_started: int = field(default=0, init=False)
    session_id_collisions: int = field(default=0, init=False)
    messages_appended: int = field(default=0, init=False)
    assignment_conflicts: int = field(default=0, init=False)
    bot_replies_ai: int = field(default=0, init=False)
    bot_replies_canned: int = field(default=0, init=False)
    bot_handoffs: int = field(default=0, init=False)
    notifications_sent: int = field(default=0, init=False)
    notification_failures: int = field(default=0, init=False)
    auth_failures: int = field(default=0, init=False)

    _latencies: list[float] = field(default_factory=list, init=False, repr=False)

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _start_time: float = field(default_factory=time.monotonic, init=False, repr=False)

    # -- Counters ----------------------------------------------------------

    def _bump(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    def inc_request(self, status_code: int) -> None:
        with self._lock:
            self.total_requests += 1
            self.status_codes[status_code] = self.status_codes.get(status_code, 0) + 1

    def inc_facility_search(self) -> None:
        self._bump("facility_searches")

    def inc_session_started(self) -> None:
        self._bump("sessions_started")

    def inc_session_id_collision(self) -> None:
        self._bump("session_id_collisions")

    def inc_message(self) -> None:
        self._bump("messages_appended")

    def inc_assignment_conflict(self) -> None:
        self._bump("assignment_conflicts")

    def inc_bot_reply(self, source: str) -> None:
        if source == "ai":
            self._bump("bot_replies_ai")
        elif source == "canned":
            self._bump("bot_replies_canned")
        else:
            self._bump("bot_handoffs")

    def inc_notification(self, success: bool) -> None:
        self._bump("notifications_sent" if success else "notification_failures")

    def inc_auth_failure(self) -> None:
        self._bump("auth_failures")

    # -- Latency -----------------------------------------------------------

    def record_latency(self, ms: float) -> None:
        with self._lock:
            self._latencies.append(ms)
            if len(self._latencies) > self._MAX_LATENCY_SAMPLES:
                half = self._MAX_LATENCY_SAMPLES // 2
                self._latencies = self._latencies[-half:]

    def get_latency_percentiles(self) -> dict[str, float]:
        with self._lock:
            return self._percentiles_unlocked()

    def _percentiles_unlocked(self) -> dict[str, float]:
        """p50/p90/p95/p99; caller must hold ``_lock``."""
        if not self._latencies:
            return {"p50": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}
        s = sorted(self._latencies)
        n = len(s)
        return {
            name: round(s[int(min(n * q, n - 1))], 2)
            for name, q in (("p50", 0.50), ("p90", 0.90), ("p95", 0.95), ("p99", 0.99))
        }

    # -- Snapshot / reset --------------------------------------------------

    def uptime_seconds(self) -> float:
        return round(time.monotonic() - self._start_time, 2)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "uptime_seconds": round(time.monotonic() - self._start_time, 2),
                "total_requests": self.total_requests,
                "status_codes": dict(self.status_codes),
                "facilities": {"searches": self.facility_searches},
                "chat": {
                    "sessions_started": self.sessions_started,
                    "session_id_collisions": self.session_id_collisions,
                    "messages_appended": self.messages_appended,
                    "assignment_conflicts": self.assignment_conflicts,
                },
                "bot": {
                    "ai": self.bot_replies_ai,
                    "canned": self.bot_replies_canned,
                    "handoffs": self.bot_handoffs,
                },
                "notifications": {
                    "sent": self.notifications_sent,
                    "failures": self.notification_failures,
                },
                "auth_failures": self.auth_failures,
                "latency_ms": self._percentiles_unlocked(),
            }

    def reset(self) -> None:
        with self._lock:
            for name in (
                "total_requests",
                "facility_searches",
                "sessions_started",
                "session_id_collisions",
                "messages_appended",
                "assignment_conflicts",
                "bot_replies_ai",
                "bot_replies_canned",
                "bot_handoffs",
                "notifications_sent",
                "notification_failures",
                "auth_failures",
            ):
                setattr(self, name, 0)
            self.status_codes.clear()
            self._latencies.clear()
            self._start_time = time.monotonic()


metrics = MetricsCollector()
