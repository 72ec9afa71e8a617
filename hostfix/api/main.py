"""hostfix API.

Managed hosting for low-code projects plus paid, AI-generated fixes:
- Projects: migrate a GitHub repo to managed hosting
- Fixes: triage → quote → pay → generate + preview → approve/reject → deploy
- Deployments: build records reconciled against the hosting provider
- Billing: fix pricing, hosting subscription, Stripe webhooks
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hostfix import __version__
from hostfix.api.routes import auth, billing, deployments, fixes, projects, runs, webhooks
from hostfix.dispatch import recover_orphaned_runs, start_deployment_sweep, stop_deployment_sweep
from hostfix.store import execute, init_db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Initializing record store...")
    init_db()

    recovered = recover_orphaned_runs()
    if recovered:
        logger.info(f"Re-dispatched {recovered} interrupted step runs")

    start_deployment_sweep()

    logger.info("hostfix API ready")
    yield
    # Shutdown
    stop_deployment_sweep()
    logger.info("Shutting down hostfix API")


# Create FastAPI app
app = FastAPI(
    title="hostfix API",
    description="""
## Managed hosting and paid fixes for low-code projects

### Key Endpoints

- `POST /v1/projects` - Create a project (starts migration when a repo URL is given)
- `POST /v1/projects/{id}/fixes` - Submit a fix request (starts triage)
- `POST /v1/fixes/{id}/confirm` - Accept the quote and get a payment client secret
- `POST /v1/fixes/{id}/approve` - Ship a previewed fix to production
- `POST /v1/webhooks/stripe` - Stripe events
""",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /v1 prefix
app.include_router(auth.router, prefix="/v1")
app.include_router(projects.router, prefix="/v1")
app.include_router(fixes.router, prefix="/v1")
app.include_router(deployments.router, prefix="/v1")
app.include_router(billing.router, prefix="/v1")
app.include_router(webhooks.router, prefix="/v1")
app.include_router(runs.router, prefix="/v1")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "hostfix API",
        "version": __version__,
        "docs": "/docs",
        "endpoints": {
            "auth": "/v1/auth",
            "projects": "/v1/projects",
            "fixes": "/v1/fixes",
            "deployments": "/v1/deployments",
            "billing": "/v1/billing",
            "webhooks": "/v1/webhooks/stripe",
            "runs": "/v1/runs",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    try:
        execute("SELECT 1 AS ok", fetch="one")
        database = "ok"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        database = "error"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
    }
