from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
from contextlib import asynccontextmanager
import uvicorn
from dotenv import load_dotenv
import logging

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

from mongo.constants import CORS_ALLOW_ORIGINS
from mongo.tenants import TenantConnectionError, TenantConnectionRegistry
from rbac.permissions import AccessError
from rbac.project_endpoints import router as project_router


def create_app(registry: Optional[TenantConnectionRegistry] = None) -> FastAPI:
    """Build the API. Tests inject a registry backed by an in-memory client."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage the lifespan of the FastAPI application"""
        # Startup
        app.state.tenant_registry = registry if registry is not None else TenantConnectionRegistry()
        logger.info("Tenant connection registry ready")
        yield

        # Shutdown
        await app.state.tenant_registry.close_all()

    app = FastAPI(
        title="HRMS Tenancy API",
        description="Multi-tenant HR data access with project-scoped authorization",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOW_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AccessError)
    async def access_error_handler(request: Request, exc: AccessError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.message, "errors": exc.errors},
        )

    @app.exception_handler(TenantConnectionError)
    async def tenant_connection_error_handler(request: Request, exc: TenantConnectionError):
        logger.error(f"Tenant database unavailable for {exc.tenant_id}: {exc.reason}")
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": "Tenant database unavailable", "errors": [exc.reason]},
        )

    app.include_router(project_router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {"message": "HRMS Tenancy API", "status": "running"}

    @app.get("/health")
    async def health_check(request: Request):
        """Health of the cached tenant connections"""
        health = request.app.state.tenant_registry.health_check()
        return {"status": "healthy" if health["healthy"] else "degraded", **health}

    @app.get("/health/tenants")
    async def tenant_status(request: Request):
        """Per-tenant connection snapshot"""
        return request.app.state.tenant_registry.get_connection_status()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
        forwarded_allow_ips="*"
        )
