"""Prometheus exporter helpers."""

from __future__ import annotations

from prometheus_client import Counter


generation_tasks_created_total = Counter(
    "generation_tasks_created_total",
    "Total number of accepted generation tasks.",
)

generation_tasks_finished_total = Counter(
    "generation_tasks_finished_total",
    "Generation tasks that reached a terminal state.",
    ["status"],
)

generation_fallback_total = Counter(
    "generation_fallback_total",
    "Generation runs completed by the fallback simulator instead of the provider.",
    ["reason"],
)
