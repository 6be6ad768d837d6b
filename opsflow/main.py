# main.py
import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from opsflow.config import TRUSTED_HOSTS, configure_logging
from opsflow.exceptions import WorkflowError
from opsflow.routers import api, events, instances, steps, templates

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="opsflow",
    redirect_slashes=False,
)

# Honour X-Forwarded-* from the fronting proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=TRUSTED_HOSTS)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    body = {"error": exc.message}
    if exc.details is not None:
        body["details"] = exc.details
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder({"error": "Invalid request body", "details": exc.errors()}),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


# Include routers
app.include_router(api.router)
app.include_router(templates.router)
app.include_router(instances.router)
app.include_router(steps.router)
app.include_router(events.router)
