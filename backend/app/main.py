"""
Lead Allocation Engine - FastAPI Application

Main entry point for the lead allocation backend.

Architecture:
- PropertyDB universe → BuyBoxFilter → eligible properties
- SignalCatalog → Scoring → TrackingDB (lane, points)
- CadenceStateMachine → Active / CoolingDown
- AllocationEngine → WeeklyBatchDB (deduplicated, capacity-bounded)
- SkipTraceLedgerService → wallet settlement + Downloaded batch
"""
import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import accounts_router, admin_router, scheduler_router
from .database import SessionLocal, init_db
from .services.allocation import AccountLockRegistry, seed_default_signals, seed_system_defaults

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and reference data on startup."""
    init_db()
    db = SessionLocal()
    try:
        seed_default_signals(db)
        seed_system_defaults(db)
        db.commit()
    finally:
        db.close()
    app.state.account_locks = AccountLockRegistry()
    logger.info("Lead Allocation Engine started")
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Lead Allocation Engine",
    description="""
    Lead Allocation & Cadence Engine

    Selects, each weekly cycle, a capacity-bounded and owner-deduplicated
    set of distressed-property records for every subscribing account.

    ## Pipeline
    1. **Buy-Box Filter**: account criteria over the property universe
    2. **Scoring**: signal weights → allocation points and lane
    3. **Cadence**: touch ceilings, score floor, cooldown
    4. **Allocation**: candidates → owner dedup → capacity → batch
    5. **Settlement**: skip-trace estimate, wallet debit, Downloaded

    ## Key Principles
    - Touches increment only when a batch is first downloaded
    - Wallet debits and touch increments commit together or not at all
    - Administrative statuses are never entered by the cycle itself
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(accounts_router)
app.include_router(admin_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Lead Allocation Engine",
        "version": "1.0.0",
        "description": "Weekly lead allocation and cadence engine",
        "docs": "/docs",
        "lanes": ["Blitz", "Chase", "Nurture"],
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=os.getenv("API_HOST", "0.0.0.0"), port=int(os.getenv("API_PORT", "8001")))
