# formflow/main.py

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from formflow.core.config import settings
from formflow.core.exceptions import FormFlowBaseException, convert_to_http_exception
from formflow.utils.logger import setup_app_logging, get_logger
# Local application imports - Routes
from formflow.submissions.router import router as submission_routes
from formflow.esign.router import router as esign_routes


# Create the FastAPI app
formflow_app = FastAPI(
    title=f"{settings.app_name} - {settings.environment}",
    description="Submission ingestion and signature lifecycle API",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure logging
if settings.environment.lower() != "production":
    setup_app_logging(
        formflow_app,
        log_level=settings.log_level,
        use_json=settings.log_json,
        log_file=settings.log_file,
        app_name=settings.app_name,
        environment=settings.environment,
    )
else:
    setup_app_logging(
        formflow_app,
        log_level=settings.log_level,
        use_json=True,
        log_file=settings.log_file,
        app_name=settings.app_name,
        environment="production",
    )
logger = get_logger(__name__)

# Add CORS middleware
formflow_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_cors_urls.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@formflow_app.exception_handler(FormFlowBaseException)
async def formflow_exception_handler(request: Request, exc: FormFlowBaseException):
    """
    Map uncaught service exceptions to their HTTP status
    """
    http_exc = convert_to_http_exception(exc)
    logger.warning(
        "Request failed with service error",
        path=request.url.path,
        status_code=http_exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


# Include routers
formflow_app.include_router(submission_routes)
formflow_app.include_router(esign_routes)


# Root API to check if the server is up
@formflow_app.get("/", tags=["Base"])
async def health_check():
    """
    Root API to check if the server is up
    """
    logger.info("Calling root API for testing")
    return {"status": "ok"}
