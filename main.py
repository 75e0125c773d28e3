import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

import config
import errors
from db import Base, engine
from routers import ALL_ROUTERS

app = FastAPI(title="Lending API")

Base.metadata.create_all(bind=engine)

# -----------------------
# Logging
# -----------------------
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("app")

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

# -----------------------
# Errors
# -----------------------
@app.exception_handler(errors.LendingError)
async def lending_error_handler(request: Request, exc: errors.LendingError):
    logger.warning(
        "rejected method=%s path=%s status=%s code=%s detail=%s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.code,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("invalid request method=%s path=%s", request.method, request.url.path)
    return JSONResponse(
        status_code=400,
        content={
            "detail": "validation failed",
            "code": errors.ValidationError.code,
            "errors": jsonable_encoder(exc.errors()),
        },
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error method=%s path=%s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "internal server error", "code": "internal_error"})


@app.get("/")
def root():
    return {"message": "Lending API", "docs": "/docs"}


for r in ALL_ROUTERS:
    app.include_router(r)
