import os
from dotenv import load_dotenv
import logging

# Load environment variables from .env file
load_dotenv()

# Configure logging
logger = logging.getLogger(__name__)

# Database configuration
_DEFAULT_MONGODB_URI = "mongodb://localhost:27017"


def _resolve_mongo_uri() -> str:
    """Resolve the MongoDB connection string with sane fallbacks."""
    candidates = [
        os.getenv("MONGODB_URI"),
        os.getenv("MONGODB_CONNECTION_STRING"),
    ]

    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()

    if any(candidate == "" for candidate in candidates):
        logger.warning("MONGODB connection string env var was empty; falling back to default URI.")

    return _DEFAULT_MONGODB_URI


MONGODB_CONNECTION_STRING = _resolve_mongo_uri()

# Every tenant gets its own database: <prefix><tenantId>
TENANT_DB_PREFIX = os.getenv("TENANT_DB_PREFIX", "tenant_")

# Per-tenant Motor client pool settings
TENANT_MAX_POOL_SIZE: int = int(os.getenv("TENANT_MAX_POOL_SIZE", "10"))
TENANT_MIN_POOL_SIZE: int = int(os.getenv("TENANT_MIN_POOL_SIZE", "2"))
TENANT_SERVER_SELECTION_TIMEOUT_MS: int = int(os.getenv("TENANT_SERVER_SELECTION_TIMEOUT_MS", "5000"))
TENANT_CONNECT_TIMEOUT_MS: int = int(os.getenv("TENANT_CONNECT_TIMEOUT_MS", "10000"))
TENANT_SOCKET_TIMEOUT_MS: int = int(os.getenv("TENANT_SOCKET_TIMEOUT_MS", "45000"))


def tenant_client_options() -> dict:
    """Keyword arguments handed to every tenant Motor client."""
    return {
        "maxPoolSize": TENANT_MAX_POOL_SIZE,
        "minPoolSize": TENANT_MIN_POOL_SIZE,
        "serverSelectionTimeoutMS": TENANT_SERVER_SELECTION_TIMEOUT_MS,
        "connectTimeoutMS": TENANT_CONNECT_TIMEOUT_MS,
        "socketTimeoutMS": TENANT_SOCKET_TIMEOUT_MS,
        "retryWrites": True,
        "retryReads": True,
    }


# "always" or "unassigned_only" - see rbac.access.FallbackPolicy
ACCESS_FALLBACK_POLICY = os.getenv("ACCESS_FALLBACK_POLICY", "always").strip().lower()

CORS_ALLOW_ORIGINS = [
    origin.strip() for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if origin.strip()
]

# Tenant collections
PROJECTS_COLLECTION = "projects"
PROJECT_ASSIGNMENTS_COLLECTION = "projectassignments"
TEAM_ASSIGNMENTS_COLLECTION = "teamassignments"
USERS_COLLECTION = "users"

# Collections every freshly provisioned tenant database should have
TENANT_COLLECTIONS = [
    USERS_COLLECTION,
    "departments",
    "designations",
    "attendance",
    "leave_requests",
    "payroll",
    "roles",
    "permissions",
    "recruitment",
    "onboarding",
    PROJECTS_COLLECTION,
    PROJECT_ASSIGNMENTS_COLLECTION,
    TEAM_ASSIGNMENTS_COLLECTION,
    "assets",
    "notifications",
    "timesheets",
    "activity_logs",
    "settings",
]
