# Environment-driven configuration, read lazily so tests can monkeypatch
import os

DEFAULT_METRICS_TIMEOUT_SECONDS = 5.0
DEFAULT_PATIENT_LIST_LIMIT = 100


def is_demo_mode() -> bool:
    """True only when DEMO_MODE env var is explicitly 'true' (case-insensitive)."""
    return os.environ.get("DEMO_MODE", "").lower() == "true"


def frontend_url() -> str:
    return os.environ.get("FRONTEND_URL", "")


def metrics_timeout_seconds() -> float:
    """Upper bound for one patient's metrics lookup."""
    raw = os.environ.get("METRICS_TIMEOUT_SECONDS", "")
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_METRICS_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_METRICS_TIMEOUT_SECONDS


def patient_list_limit() -> int:
    """Max discharges pulled into one patient-list snapshot."""
    raw = os.environ.get("PATIENT_LIST_LIMIT", "")
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_PATIENT_LIST_LIMIT
    return value if value > 0 else DEFAULT_PATIENT_LIST_LIMIT


def log_level() -> str:
    return os.environ.get("LOG_LEVEL", "INFO").upper()
