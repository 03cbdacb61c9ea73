import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
from library_app.core.config import settings
from library_app.core.database import engine, Base
from library_app.core.exceptions import InternalError, LibraryError
from library_app.core.logging_config import setup_logging
from library_app.core.scheduler import start_scheduler, stop_scheduler
from library_app.api.routes import admin, auth, books, circulation
# Every model module must be imported before create_all
from library_app.models import catalog, patron, profile, reservation, review, session, user  # noqa: F401
from library_app.models import circulation as circulation_models  # noqa: F401

setup_logging()
logger = logging.getLogger(__name__)

# Create database tables from all models that inherit from Base
# In production, use migrations (Alembic) instead of create_all
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage app lifecycle events.

    Startup: Start background scheduler for session and reservation cleanup
    Shutdown: Stop background scheduler
    """
    if settings.ENABLE_SCHEDULER:
        start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="Library Circulation API",
    description="Authentication, account administration and circulation for the library dashboard",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware - allows the dashboard to call the API from the browser
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in error["loc"]) for error in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "code": "VALIDATION_ERROR", "details": {"fields": fields}},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    # Store faults never reach the client beyond a generic 500
    logger.error(f"Unhandled database error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content=InternalError().to_dict())


app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(books.router)
app.include_router(circulation.router)


@app.get("/")
async def root():
    """Root endpoint - API information"""
    return {"message": "Library Circulation API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check endpoint - used by monitoring/deployment tools"""
    return {"status": "healthy"}
