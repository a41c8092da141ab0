# Deterministic rule thresholds.
# Defaults for RuleConfig; every value can be overridden from the environment.

PENDING_MAX_HOURS = 72.0
# Pending beyond PENDING_MAX_HOURS * PENDING_HIGH_MULTIPLIER is high severity.
PENDING_HIGH_MULTIPLIER = 2.0

IN_TRANSIT_MAX_HOURS = 168.0
EVENT_GAP_MAX_HOURS = 72.0

EXPIRY_WARNING_DAYS = 30

MAX_QUANTITY = 100_000

TOP_RISKS_LIMIT = 5

# Queue threshold for regulator review (0-100 risk score).
HIGH_RISK_SCORE = 70
