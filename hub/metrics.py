from __future__ import annotations

from prometheus_client import Counter, Histogram

# Accepted status transitions by target status and channel (MANUAL/AUTO)
STATUS_TRANSITIONS = Counter(
    "fieldops_status_transitions_total",
    "Mission status transitions committed by the hub",
    ["to_status", "via"],
)

# Rejected remote-procedure and table calls
RPC_ERRORS = Counter(
    "fieldops_rpc_errors_total",
    "Remote procedure calls rejected by the hub",
    ["procedure", "code"],
)

RPC_LATENCY_SECONDS = Histogram(
    "fieldops_rpc_latency_seconds",
    "Latency of remote procedure calls in seconds",
    ["procedure"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

OFFERS_ISSUED = Counter(
    "fieldops_offers_issued_total",
    "Mission offers created or reissued by publication",
)

OFFER_ACCEPTANCE_RESULTS = Counter(
    "fieldops_offer_acceptance_results_total",
    "Outcomes of accept_mission_offer",
    ["result"],
)

# Change events fanned out to realtime subscribers (one per delivery)
REALTIME_DELIVERIES = Counter(
    "fieldops_realtime_deliveries_total",
    "Change events delivered to realtime subscriptions",
    ["table", "type"],
)
