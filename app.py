"""FastAPI web app for the Shopify brand stock monitor.

Routes:
  POST /webhook/inventory -- Shopify inventory webhook (HMAC-verified)
  GET  /check-now         -- run a reconciliation pass synchronously
  GET  /test-email        -- send a test notification
  GET  /history           -- recent brand transitions
  GET  /health            -- liveness + configuration summary
  GET  /                  -- service descriptor

NOTE: Per-brand state locks are in-process. Run a single worker process;
the file lock on state.json keeps the data consistent but cannot stop two
workers from both alerting on the same transition.
"""

import asyncio
import json
import logging
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

import stockwatch.config as config
from stockwatch.errors import AuthenticationFailure, ConfigurationError
from stockwatch.history import load_history
from stockwatch.notifications import sample_message
from stockwatch.reconciler import Reconciler, build_reconciler
from stockwatch.scheduler import start_scheduler, stop_scheduler
from stockwatch.signature import require_valid_signature

# ──────────────────────────────────────────────
# Logging: stdout, plus rotating file when LOG_FILE is set
# ──────────────────────────────────────────────

_handlers: list[logging.Handler] = [logging.StreamHandler()]
if config.LOG_FILE:
    _handlers.append(RotatingFileHandler(config.LOG_FILE, maxBytes=5_000_000, backupCount=3, encoding="utf-8"))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=_handlers,
)
log = logging.getLogger(__name__)


# Singleton reconciler; every trigger shares its per-brand locks
_reconciler: Reconciler | None = None
_reconciler_lock = threading.Lock()


def _get_reconciler() -> Reconciler:
    global _reconciler
    if _reconciler is not None:
        return _reconciler
    with _reconciler_lock:
        if _reconciler is None:
            _reconciler = build_reconciler()
        return _reconciler


def _run_reconciliation(trigger: str) -> None:
    """Background pass. Errors are logged; nobody is waiting on the result."""
    log.info(f"Reconciliation triggered by {trigger}")
    try:
        _get_reconciler().reconcile_all()
    except Exception:
        log.exception(f"Reconciliation ({trigger}) failed")


@asynccontextmanager
async def lifespan(app):
    try:
        config.validate()
    except ConfigurationError as e:
        log.error(str(e))
        raise SystemExit(1)

    reconciler = _get_reconciler()
    log.info(f"Monitoring {len(reconciler.brands)} brands: {', '.join(reconciler.brands)}")
    log.info(f"Notification method: {reconciler.notifier.method}")

    tasks = await start_scheduler(lambda: _run_reconciliation("scheduler"))
    yield
    stop_scheduler()
    if tasks:
        try:
            await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=30)
        except TimeoutError:
            log.warning("Scheduler did not stop within 30s")
    reconciler.notifier.close()


app = FastAPI(
    title="Shopify Brand Inventory Monitor",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


@app.exception_handler(AuthenticationFailure)
async def authentication_failure_handler(request: Request, exc: AuthenticationFailure):
    log.warning(f"Rejected {request.url.path}: {exc}")
    return PlainTextResponse("Unauthorized", status_code=401)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ──────────────────────────────────────────────
# Routes
# ──────────────────────────────────────────────

@app.post("/webhook/inventory")
async def inventory_webhook(request: Request, background_tasks: BackgroundTasks):
    """Verify the signature over the raw bytes, acknowledge, then reconcile."""
    log.info("Webhook received")
    raw_body = await request.body()
    require_valid_signature(raw_body, request.headers.get(config.HMAC_HEADER), config.SHOPIFY_WEBHOOK_SECRET)

    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        log.warning("Webhook body is not valid JSON")
        return PlainTextResponse("Bad Request", status_code=400)

    topic = request.headers.get("X-Shopify-Topic", "unknown")
    item = payload.get("inventory_item_id") if isinstance(payload, dict) else None
    log.info(f"Webhook verified (topic={topic}, inventory_item_id={item})")

    background_tasks.add_task(_run_reconciliation, "webhook")
    return PlainTextResponse("OK")


@app.get("/check-now")
def check_now():
    log.info("Manual check triggered")
    results = _get_reconciler().reconcile_all()
    return {brand: result.to_dict() for brand, result in results.items()}


@app.get("/test-email")
def test_email():
    notifier = _get_reconciler().notifier
    log.info(f"Testing notifications via {notifier.method}...")
    subject, body = sample_message(notifier.method)
    result = notifier.notify(subject, body)
    if result.success:
        return {
            "success": True,
            "message": f"Test notification sent! Check your inbox at {config.EMAIL_TO}",
            "method": result.method,
            "messageId": result.message_id,
        }
    return JSONResponse(status_code=500, content={
        "success": False,
        "error": result.error,
        "suggestion": "Try using SendGrid instead - Gmail SMTP often gets blocked by hosting providers",
    })


@app.get("/history")
def history(brand: str | None = None, limit: int = 200):
    return {"events": load_history(brand=brand, limit=max(1, min(limit, 1000)))}


@app.get("/health")
def health():
    reconciler = _get_reconciler()
    return {
        "status": "ok",
        "emailMethod": reconciler.notifier.method,
        "monitoring": reconciler.brands,
        "timestamp": _now(),
    }


@app.get("/")
def root():
    reconciler = _get_reconciler()
    return {
        "service": "Shopify Brand Inventory Monitor",
        "status": "running",
        "emailMethod": reconciler.notifier.method,
        "monitoring": f"{len(reconciler.brands)} brands",
        "endpoints": {
            "health": "/health",
            "webhook": "/webhook/inventory (POST)",
            "manualCheck": "/check-now",
            "testEmail": "/test-email",
            "history": "/history",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
