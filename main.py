import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from routes.delivery_routes import register_delivery_routes
from routes.late_orders_routes import register_late_orders_routes
from routes.log_routes import register_log_routes
from routes.purchase_order_routes import register_purchase_order_routes
from services.deliveries import ensure_delivery_schema
from services.po_store import ensure_po_schema
from services.report_store import ensure_report_schema

# --- Logging configuration ---
LOG_DIR = Path(__file__).parent / "logs"
LOG_FILE_PATH = LOG_DIR / "warehouse_backend.log"

root_logger = logging.getLogger()
logger = root_logger
if not root_logger.handlers:
    LOG_DIR.mkdir(exist_ok=True)
    root_logger.setLevel(config.LOG_LEVEL)

    formatter = logging.Formatter(config.LOG_FORMAT, datefmt=config.LOG_DATEFMT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        LOG_FILE_PATH,
        maxBytes=5_000_000,  # 5 MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

logging.getLogger("uvicorn").propagate = True
logging.getLogger("uvicorn.error").propagate = True
logging.getLogger("uvicorn.access").propagate = True
# --- End logging configuration ---

app = FastAPI(title=config.APP_NAME, version=config.APP_VERSION)

register_purchase_order_routes(app)
register_delivery_routes(app)
register_late_orders_routes(app)
register_log_routes(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    """Create the PO, delivery and report tables before the first request."""
    try:
        ensure_po_schema()
        ensure_delivery_schema()
        ensure_report_schema()
        logger.info("[Startup] Database schema ready at %s", config.WAREHOUSE_DB_PATH)
    except Exception as e:
        logger.warning(f"[Startup] Failed to ensure database schema: {e}")


@app.get("/health")
def health():
    return {"status": "ok", "app": config.APP_NAME}


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8001, reload=True)
