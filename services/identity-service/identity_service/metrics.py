"""Prometheus counters for identity workflows."""

from __future__ import annotations

from prometheus_client import Counter

LOGIN_ATTEMPTS = Counter(
    "identity_login_attempts_total",
    "Login attempts partitioned by outcome.",
    ["outcome"],
)

REGISTRATIONS = Counter(
    "identity_registrations_total",
    "Accounts registered partitioned by requested role.",
    ["requested_role"],
)

APPROVAL_DECISIONS = Counter(
    "identity_approval_decisions_total",
    "Resolved admin requests partitioned by decision.",
    ["decision"],
)
