"""Prometheus metrics, exposed at GET /metrics."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ── Turns ───────────────────────────────────────────────────────────────

turns_total = Counter(
    "tenantchat_turns_total",
    "Chat turns by final state",
    ["outcome"],  # done | cancelled | upstream_error | invalid | not_found
)

turn_duration = Histogram(
    "tenantchat_turn_duration_seconds",
    "Time from request to finalized turn",
    buckets=[0.5, 1, 2, 5, 10, 30, 60, 120, 300],
)

relayed_chunks = Counter(
    "tenantchat_relayed_chunks_total",
    "Model chunks relayed to callers",
)

# ── Context management ──────────────────────────────────────────────────

summarizations_total = Counter(
    "tenantchat_summarizations_total",
    "Summarizer runs by result",
    ["result"],  # ok | failed
)

# ── Best-effort persistence ─────────────────────────────────────────────

persistence_warnings_total = Counter(
    "tenantchat_persistence_warnings_total",
    "Swallowed persistence failures",
    ["operation"],
)
