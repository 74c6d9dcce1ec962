import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from delegation_sas.utils import config
from delegation_sas.utils.logger import logger, log_context
from delegation_sas.views.sas_view import router as azure_sas_router
from delegation_sas.sas.azure_sas_url_generator import SasUrlGenerator


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Only close the HTTP client if a request ever built the generator
    if SasUrlGenerator._instance is not None:
        await SasUrlGenerator._instance.aclose()
        logger.info("SAS URL generator HTTP client closed")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins = config.CORS_ORIGINS,
    allow_credentials = True,
    allow_methods = ["*"],
    allow_headers = ["*"]
)

# Set the log trace id from the request header when the caller sends one
@app.middleware("http")
async def add_log_traceid(request: Request, call_next):
    trace_id = request.headers.get("x-trace-id")
    if trace_id:
        log_context.set(trace_id)
    return await call_next(request)


@app.get("/actuator/health/liveness")
def liveness_check():
    return JSONResponse(status_code=200, content={"status": "UP"})

@app.get("/actuator/health/readiness")
def readiness_check():
    return JSONResponse(status_code=200, content={"status": "UP"})

@app.get("/actuator/health/detailed")
def detailed_health_check():
    """
    Detailed health check endpoint reporting whether identity and storage settings are present.
    """
    missing = config.missing_settings()
    health_status = {
        "status": "UP" if not missing else "DEGRADED",
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "components": {
            "identity": {
                "status": "DOWN" if {"AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET"} & set(missing) else "UP",
                "tenant_id": config.AZURE_TENANT_ID or "Not configured",
            },
            "storage": {
                "status": "DOWN" if "AZURE_STORAGE_ACCOUNT_NAME" in missing else "UP",
                "account_url": config.AZURE_STORAGE_ACCOUNT_URL or "Not configured",
                "default_container": config.AZURE_STORAGE_CONTAINER_NAME or "Not configured",
            },
        },
        "config": {
            "sas_url_validity_hours": config.AZURE_STORAGE_SAS_URL_VALIDITY,
            "http_timeout_seconds": config.HTTP_TIMEOUT_SECONDS,
        },
    }
    status_code = 200 if health_status["status"] == "UP" else 503
    return JSONResponse(status_code=status_code, content=health_status)


app.include_router(azure_sas_router, prefix="/sas/v1", tags=["Azure Blob SAS Generator"])


if __name__ == '__main__':
    import uvicorn

    logger.info("Server is starting")
    uvicorn.run(app, host="0.0.0.0", port=8080)
