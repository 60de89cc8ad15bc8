import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
from . import (
    models,  # noqa: F401
    models_invoice,  # noqa: F401
)
from .config import ALLOWED_ORIGINS
from .database import Base, engine
from .domain.scheduling.router import resources_router, staff_router
from .domain.scheduling.router import router as appointments_router
from .domain.settlements.router import router as settlements_router
from .shared.errors import DomainError, SettlementInvariantError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
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
            raise
    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Salon Scheduling API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Field-level detail for malformed requests"""
    logger.warning(f"Validation failed for {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    """Scheduling rejections, invalid transitions and commit conflicts"""
    logger.info(f"Rejected {request.method} {request.url.path}: {exc.kind} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SettlementInvariantError)
async def settlement_invariant_handler(request: Request, exc: SettlementInvariantError):
    logger.error(f"❌ Settlement invariant broken on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "internal-error", "message": "Settlement could not be computed"})


def jsonable_errors(exc: RequestValidationError) -> list:
    errors = []
    for error in exc.errors():
        errors.append(
            {
                "loc": list(error.get("loc", [])),
                "msg": error.get("msg"),
                "type": error.get("type"),
            }
        )
    return errors


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.include_router(appointments_router)
app.include_router(resources_router)
app.include_router(staff_router)
app.include_router(settlements_router)


@app.get("/")
async def root():
    return {"message": "Salon Scheduling API", "version": "1.0.0"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
