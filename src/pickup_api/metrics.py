from prometheus_client import Counter, Histogram

MATCH_REQUEST_LATENCY = Histogram(
    "match_request_latency_seconds",
    "Time spent finding candidate riders for a pickup",
    buckets=[0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0]
)
MATCH_ERRORS = Counter(
    "match_errors_total",
    "Total number of degraded or failed matching requests",
    ["error_type"]
)
CANDIDATES_RETURNED = Histogram(
    "match_candidates_returned",
    "Number of candidates returned per matching request",
    buckets=[0, 1, 2, 3, 4, 5]
)
RIDERS_WITHOUT_LOCATION = Counter(
    "match_riders_without_location_total",
    "Eligible riders dropped because they had no live position"
)
PICKUP_TRANSITIONS = Counter(
    "pickup_transitions_total",
    "Pickup status changes, by the status entered",
    ["status"]
)
PICKUP_CREATE_FAILURES = Counter(
    "pickup_create_failures_total",
    "Rejected pickup creations, by reason",
    ["reason"]
)
