from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

import logging
import os
import time

from db import Base, engine
from errors import (
    AlreadyClosed,
    CannotDeleteSignedLoan,
    EmptyLoan,
    LoanError,
    LoanNotOpen,
    MissingSignature,
    NotFound,
    ReservationConflict,
    ValidationError,
)
from models import ErrorBody, ErrorEnvelope
from routers import ALL_ROUTERS

import orm  # noqa: F401  (registers tables on Base.metadata)

app = FastAPI(title="Loan ledger API")

Base.metadata.create_all(bind=engine)

# -----------------------
# Logging
# -----------------------
logging.basicConfig(
    level=os.getenv("APP_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("app")

ERROR_STATUS = [
    (NotFound, 404),
    (ValidationError, 400),
    (EmptyLoan, 400),
    (MissingSignature, 400),
    (LoanNotOpen, 409),
    (ReservationConflict, 409),
    (AlreadyClosed, 409),
    (CannotDeleteSignedLoan, 409),
]


def status_for(exc: LoanError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 400


def error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    body = ErrorEnvelope(error=ErrorBody(kind=kind, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(LoanError)
async def loan_error_handler(request: Request, exc: LoanError):
    status_code = status_for(exc)
    logger.info(
        "domain error kind=%s status=%s path=%s message=%s",
        exc.kind, status_code, request.url.path, exc.message,
    )
    return error_response(status_code, exc.kind, exc.message)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    logger.warning("database busy path=%s error=%s", request.url.path, exc.orig)
    return error_response(503, "LockContention", "database is busy, retry later")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed_ms = int((time.time() - start) * 1000)
    logger.info(
        "method=%s path=%s status=%s elapsed_ms=%s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


for router in ALL_ROUTERS:
    app.include_router(router)


@app.get("/")
def root():
    return {"message": "Loan ledger API", "docs": "/docs"}
