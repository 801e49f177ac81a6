import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from midnight.api.deps import get_scheduler
from midnight.api.runs import router as runs_router
from midnight.api.status import router as status_router
from midnight.core.config import ENABLE_SCHEDULER

logger = logging.getLogger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the midnight scheduler with the server and stop it on shutdown."""
    scheduler = get_scheduler() if ENABLE_SCHEDULER else None
    if scheduler is not None:
        scheduler.start()
    else:
        logger.info("Scheduler disabled (ENABLE_SCHEDULER=false)")
    yield
    if scheduler is not None:
        await scheduler.stop()


app = FastAPI(title="Midnight Check", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info(f"Incoming: {request.method} {request.url.path} from {client_host}")

        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            logger.info(
                f"Outgoing: {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Time: {process_time:.2f}ms"
            )
            return response
        except Exception as e:
            logger.error(f"Request failed: {request.method} {request.url.path} - Error: {str(e)}")
            raise e


app.add_middleware(LoggingMiddleware)


# Health endpoint
@app.get("/health")
async def health_check():
    return {"status": "ok"}


# Register routers
app.include_router(status_router, tags=["Scheduler"])
app.include_router(runs_router)


if __name__ == "__main__":
    from midnight.utils.logging_config import setup_logging

    setup_logging(level=logging.INFO)
    uvicorn.run("main:app", host="127.0.0.1", port=8000)
