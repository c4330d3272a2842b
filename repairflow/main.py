import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models so create_all sees every table
from . import models, models_case, models_shipment  # noqa: F401
from .config import ALLOWED_ORIGINS, LOG_LEVEL
from .database import Base, engine
from .domain.cases.router import router as cases_router
from .domain.shipments.router import router as shipments_router
from .domain.vendors.router import router as vendors_router
from .errors import CaseWorkflowError

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    from .idempotency import get_redis_client

    if get_redis_client() is not None:
        logger.info("Redis connection established")
    else:
        logger.info("Carrier event dedup running in per-process memory")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="RepairFlow API", version="1.0.0", lifespan=lifespan)


def error_response(status_code: int, kind: str, message: str, current_state=None) -> JSONResponse:
    error = {"kind": kind, "message": message}
    if current_state is not None:
        error["currentState"] = current_state
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


@app.exception_handler(CaseWorkflowError)
async def case_workflow_exception_handler(request: Request, exc: CaseWorkflowError):
    """Render gate, not-found, validation and conflict failures with their message verbatim"""
    logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.kind, exc.message, exc.current_state)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Convert request validation errors to the VALIDATION envelope, or to 401
    when the issue is with the Authorization header
    """
    # Check if the error is related to Authorization header
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={
                    "detail": "Not authenticated. Please provide a valid Bearer token in the Authorization header."
                },
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{field}: {error.get('msg')}" if field else str(error.get("msg")))
    return error_response(400, "VALIDATION", "; ".join(problems) or "Invalid request")


# CORS Configuration
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(cases_router)
app.include_router(shipments_router)
app.include_router(vendors_router)


@app.get("/")
def root():
    return {"message": "RepairFlow API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
