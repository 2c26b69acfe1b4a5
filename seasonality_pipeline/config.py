"""Runtime settings, read from the environment (and a local .env file)."""
import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


DB_PATH = os.environ.get("SEASONALITY_DB_PATH", os.path.join(os.getcwd(), "seasonality.sqlite"))

# Rows per transaction when writing raw bars, aggregate tables and the daily table
RAW_BATCH_SIZE = _int_env("SEASONALITY_RAW_BATCH_SIZE", 1000)
AGG_BATCH_SIZE = _int_env("SEASONALITY_AGG_BATCH_SIZE", 100)
DAILY_BATCH_SIZE = _int_env("SEASONALITY_DAILY_BATCH_SIZE", 500)

# A file is rejected when pre-validation finds more row errors than this
MAX_ROW_ERRORS = _int_env("SEASONALITY_MAX_ROW_ERRORS", 0)
MAX_REPORTED_ERRORS = _int_env("SEASONALITY_MAX_REPORTED_ERRORS", 50)

LOOKBACK_YEARS = _int_env("SEASONALITY_LOOKBACK_YEARS", 1)
MAX_WORKERS = _int_env("SEASONALITY_MAX_WORKERS", 1)
