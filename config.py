import logging
import os
from pathlib import Path

# Load .env early so os.getenv picks up local dev secrets.
try:  # pragma: no cover - environment bootstrap
    from dotenv import load_dotenv

    _DOTENV_PATHS = [Path.cwd() / ".env", Path(__file__).resolve().parent / ".env"]
    for _env_path in _DOTENV_PATHS:
        if _env_path.exists():
            load_dotenv(dotenv_path=_env_path, override=False)
except Exception as exc:
    logging.getLogger(__name__).warning("Failed to load .env: %s", exc)

APP_NAME = "Warehouse PO Tracker"
APP_VERSION = "1.0.0"

# ----------------------------
# Helpers
# ----------------------------
def _req(name: str) -> str:
    v = os.getenv(name)
    if not v:
        raise RuntimeError(f"Missing required env var: {name}")
    return v

def _csv_list(name: str, default: str = "") -> list[str]:
    raw = (os.getenv(name) or default).strip()
    if not raw:
        return []
    return [x.strip() for x in raw.split(",") if x.strip()]

def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name) or default)
    except ValueError:
        return default

def _float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name) or default)
    except ValueError:
        return default

# ----------------------------
# System A (GoFlow) - credentials are read lazily via _req
# ----------------------------
GOFLOW_BASE_URL = (os.getenv("GOFLOW_BASE_URL") or "").rstrip("/")
GOFLOW_CONTACT = os.getenv("GOFLOW_CONTACT", "")
GOFLOW_WAREHOUSE_ID = os.getenv("GOFLOW_WAREHOUSE_ID", "07a215d8-3244-4b7b-beda-d81ddbef5fb6")
GOFLOW_STORE_IDS = _csv_list("GOFLOW_STORE_IDS", "1002,1003")
GOFLOW_DUE_BY_TAG_ID = os.getenv("GOFLOW_DUE_BY_TAG_ID", "")
# POs created by this account are internal transfers, not vendor POs
GOFLOW_INTERNAL_USERNAME = os.getenv("GOFLOW_INTERNAL_USERNAME", "admin")

# ----------------------------
# System B (Magento bulk PO export)
# ----------------------------
MAGENTO_PO_EXPORT_URL = os.getenv(
    "MAGENTO_PO_EXPORT_URL",
    "https://host.mapleprime.com/api/v1/purchase-order/product/bulk-download",
)
# Legacy PO numbers carrying this marker record both channels as GoFlow stock
PO_COMBINED_MARKER = os.getenv("PO_COMBINED_MARKER", "-GF")

# ----------------------------
# Operations
# ----------------------------
OPERATIONS_TIMEZONE = os.getenv("OPERATIONS_TIMEZONE", "America/New_York")
LATE_ORDERS_REPORT_COOLDOWN_MINUTES = _int("LATE_ORDERS_REPORT_COOLDOWN_MINUTES", 60)
PO_SYNC_COOLDOWN_MINUTES = _int("PO_SYNC_COOLDOWN_MINUTES", 2)
INVENTORY_LOOKUP_DELAY_SECONDS = _float("INVENTORY_LOOKUP_DELAY_SECONDS", 2.0)
INVENTORY_LOOKUP_CONCURRENCY = max(1, _int("INVENTORY_LOOKUP_CONCURRENCY", 1))
JOB_LOCK_TTL_MINUTES = _int("JOB_LOCK_TTL_MINUTES", 30)
# A live run pushes its lock expiry forward this often
JOB_LOCK_HEARTBEAT_SECONDS = _float("JOB_LOCK_HEARTBEAT_SECONDS", 60.0)

# ----------------------------
# HTTP
# ----------------------------
HTTP_TIMEOUT_SECONDS = _float("HTTP_TIMEOUT_SECONDS", 15.0)
HTTP_MAX_ATTEMPTS = max(1, _int("HTTP_MAX_ATTEMPTS", 3))

# ----------------------------
# Storage
# ----------------------------
WAREHOUSE_DB_PATH = Path(
    os.getenv("WAREHOUSE_DB_PATH") or Path(__file__).resolve().parent / "warehouse.db"
)

# ----------------------------
# Logging
# ----------------------------
LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
