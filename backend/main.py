## File: backend/main.py
# Creates the FastAPI application: request logging and CORS middleware, the
# detention, evidence, facility, history, invoice, billing and user routers, error
# mapping for store and validation failures, and the reminder scheduler.

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.billing.routes import router as billing_router
from app.common.validation import ValidationError
from app.core.request_log import RequestLogMiddleware
from app.core.scheduler import shutdown as stop_scheduler
from app.core.scheduler import start as start_scheduler
from app.db.convex_client import StoreError, db
from app.detention.routes import router as detention_router
from app.evidence.routes import router as evidence_router
from app.facilities.routes import router as facility_router
from app.history.routes import router as history_router
from app.invoice.routes import router as invoice_router
from app.users.routes import router as user_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="DwellTime API")

app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(detention_router)
app.include_router(evidence_router)
app.include_router(facility_router)
app.include_router(history_router)
app.include_router(invoice_router)
app.include_router(billing_router)
app.include_router(user_router)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("Store call failed during %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Data store unavailable", "path": exc.path})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "field": exc.field})


@app.on_event("startup")
async def on_startup():
    start_scheduler()


@app.on_event("shutdown")
async def on_shutdown():
    stop_scheduler()
    await db.disconnect()


@app.get("/")
async def root():
    return {"message": "DwellTime detention API"}
