from __future__ import annotations

import logging
import os

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from database import Base, engine, session_scope
from routers.auth import router as auth_router
from routers.contact import router as contact_router
from routers.expenses import router as expenses_router
from routers.images import router as images_router
from routers.inventory import router as inventory_router
from routers.phone_auth import router as phone_auth_router
from routers.wishlist import router as wishlist_router
from utils.cart_alerts import check_abandoned_carts
from utils.errors import ApiError
from utils.wishlist_alerts import check_wishlist_price_drops


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("retail_hub")

app = FastAPI(title="Retail Hub Backend")

# Create tables (simple projects; for production use migrations).
Base.metadata.create_all(bind=engine)

app.include_router(auth_router, prefix="/api")
app.include_router(phone_auth_router, prefix="/api")
app.include_router(wishlist_router, prefix="/api")
app.include_router(inventory_router, prefix="/api")
app.include_router(expenses_router, prefix="/api")
app.include_router(contact_router, prefix="/api")
app.include_router(images_router)

app.mount("/static", StaticFiles(directory=os.getenv("UPLOAD_DIR", "uploads"), check_dir=False), name="static")


@app.exception_handler(ApiError)
async def _api_error(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    details = [{"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg")} for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid request body", "details": details},
    )


def _run_sweep(name: str, sweep) -> dict:
    try:
        with session_scope() as db:
            return sweep(db)
    except Exception:
        logger.exception("%s sweep failed", name)
        return {"success": False, "error": f"{name} sweep failed"}


def run_abandoned_cart_sweep() -> dict:
    return _run_sweep("Abandoned cart", check_abandoned_carts)


def run_price_drop_sweep() -> dict:
    return _run_sweep("Wishlist price drop", check_wishlist_price_drops)


@app.on_event("startup")
def _start_scheduler():
    if os.getenv("SCHEDULER_ENABLED", "1") == "0":
        return
    sched = BackgroundScheduler(timezone=os.getenv("TZ", "UTC"))
    sched.add_job(
        run_abandoned_cart_sweep,
        "interval",
        minutes=int(os.getenv("CART_SWEEP_MINUTES", "60")),
        id="abandoned_cart_sweep",
        replace_existing=True,
    )
    sched.add_job(
        run_price_drop_sweep,
        "cron",
        hour=int(os.getenv("WISHLIST_SWEEP_HOUR", "9")),
        id="wishlist_price_drop_sweep",
        replace_existing=True,
    )
    sched.start()
    app.state._scheduler = sched


@app.on_event("shutdown")
def _stop_scheduler():
    sched = getattr(app.state, "_scheduler", None)
    if sched:
        sched.shutdown(wait=False)


@app.get("/")
def root():
    return {"status": "Backend running"}
