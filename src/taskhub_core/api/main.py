"""Taskhub Core FastAPI application."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskhub_core.config import Settings, get_settings
from taskhub_core.database import Store
from taskhub_core.errors import TaskhubError
from taskhub_core.schemas import error_field

from .routers import activity, departments, organizations, projects, sprints, tasks, teams, users

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("taskhub-core")


def create_app(store: Optional[Store] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application around an explicitly constructed store.

    The store is opened when the app starts and closed when it stops. Tests
    pass an already-open store so nothing global is involved.
    """
    settings = settings or get_settings()
    store = store or Store.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.app_name} ({settings.environment})")
        app.state.store.open()
        yield
        app.state.store.close()

    app = FastAPI(
        title=settings.app_name,
        description="Organizations, teams, projects, sprints and tasks",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TaskhubError)
    async def taskhub_error_handler(request: Request, exc: TaskhubError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"field": error_field(err["loc"]), "message": err["msg"]} for err in exc.errors()]
        first = errors[0] if errors else {"field": "body", "message": "Invalid request"}
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "validation_error",
                "message": f"{first['field']}: {first['message']}",
                "field": first["field"],
                "errors": errors,
            },
        )

    # Include all business logic routers with /api/v1 prefix
    app.include_router(organizations.router, prefix="/api/v1/organizations")
    app.include_router(departments.router, prefix="/api/v1/departments")
    app.include_router(teams.router, prefix="/api/v1/teams")
    app.include_router(projects.router, prefix="/api/v1/projects")
    app.include_router(users.router, prefix="/api/v1/users")
    app.include_router(sprints.router, prefix="/api/v1")
    app.include_router(tasks.router, prefix="/api/v1")
    app.include_router(activity.router, prefix="/api/v1")

    @app.get("/")
    def root():
        """Root endpoint with server info."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "store_open": app.state.store.is_open}

    return app


app = create_app()
