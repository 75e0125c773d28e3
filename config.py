import logging
import os

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("invalid integer for %s=%r, using default %s", name, raw, default)
        return default


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# reputation
INITIAL_TRUST_SCORE = _env_int("INITIAL_TRUST_SCORE", 100)

# cancellation / modification
LATE_CANCEL_WINDOW_HOURS = _env_int("LATE_CANCEL_WINDOW_HOURS", 24)
LATE_CANCEL_PENALTY = _env_int("LATE_CANCEL_PENALTY", 5)
VERY_LATE_CANCEL_PENALTY = _env_int("VERY_LATE_CANCEL_PENALTY", 10)
SIGNIFICANT_CHANGE_HOURS = _env_int("SIGNIFICANT_CHANGE_HOURS", 24)

# pickup
PICKUP_TOKEN_TTL_HOURS = _env_int("PICKUP_TOKEN_TTL_HOURS", 24)

# returns
CONDITION_PENALTY_PER_STEP = _env_int("CONDITION_PENALTY_PER_STEP", 5)
MAX_RETURN_PENALTY = 100

# criterion values run 1..5; an overall score at or above a threshold earns the tier
DEFAULT_CONDITION_THRESHOLDS = {
    "excellent": 4.5,
    "good": 3.5,
    "fair": 2.5,
    "poor": 1.5,
}

# overdue scan
OVERDUE_POINTS_PER_DAY = _env_int("OVERDUE_POINTS_PER_DAY", 2)
OVERDUE_PENALTY_CAP = _env_int("OVERDUE_PENALTY_CAP", 20)
OVERDUE_MODERATE_MAX_DAYS = _env_int("OVERDUE_MODERATE_MAX_DAYS", 3)
OVERDUE_HIGH_MAX_DAYS = _env_int("OVERDUE_HIGH_MAX_DAYS", 7)

SYSTEM_USER_ID = "system"
