from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import logging
import os
import time

from db import Base, engine
from errors import BorrowError
from routers import ALL_ROUTERS

app = FastAPI(title="Asset Borrow API")

Base.metadata.create_all(bind=engine)

# -----------------------
# Logging
# -----------------------
logging.basicConfig(
    level=os.getenv("APP_LOG_LEVEL", "INFO").upper(),
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

@app.exception_handler(BorrowError)
async def borrow_error_handler(request: Request, exc: BorrowError):
    logger.warning("path=%s error=%s detail=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )

for router in ALL_ROUTERS:
    app.include_router(router)

@app.get("/")
def root():
    return {"message": "Asset Borrow API", "docs": "/docs"}
