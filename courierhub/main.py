# courierhub/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from courierhub.api.routers.courier_webhooks import router as courier_webhooks_router
from courierhub.core.config import get_settings
from courierhub.core.logging import setup_logging
from courierhub.db.session import close_engine
from courierhub.obs.metrics import router as metrics_router
from courierhub.obs.tracing import setup_tracing
from courierhub.services.delivery_errors import DeliveryError

setup_logging(get_settings().LOG_LEVEL)
logger = logging.getLogger("courierhub")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    await close_engine()


app = FastAPI(title="courier-hub", version="0.1.0", lifespan=lifespan)

if setup_tracing(app):
    logger.info("OpenTelemetry tracing enabled")


@app.exception_handler(DeliveryError)
async def _delivery_exc(_req: Request, exc: DeliveryError):
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.message})


@app.exception_handler(HTTPException)
async def _http_exc(_req: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def _unhandled_exc(_req: Request, exc: Exception):
    logger.exception("UNHANDLED_EXC: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "INTERNAL_ERROR"})


app.include_router(courier_webhooks_router)
app.include_router(metrics_router)


@app.get("/health")
async def health():
    return {"status": "ok", "env": get_settings().ENV}


def run() -> None:
    import uvicorn

    uvicorn.run("courierhub.main:app", host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":
    run()
