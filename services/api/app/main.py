"""SaveUp API service entrypoint."""

import logging
import os

from fastapi import FastAPI

from services.api.app.db.init_db import init_db
from services.api.app.routers.audit import router as audit_router
from services.api.app.routers.eco_points import router as eco_points_router
from services.api.app.routers.order import router as order_router
from services.api.app.routers.product import router as product_router

app = FastAPI(title="SaveUp API")

app.include_router(product_router)
app.include_router(order_router)
app.include_router(eco_points_router)
app.include_router(audit_router)


@app.on_event("startup")
def _startup() -> None:
    logging.basicConfig(
        level=os.getenv("SAVEUP_LOG_LEVEL", "INFO").strip().upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
