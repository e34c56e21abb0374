import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from retail_ledger.api.routes.documents import router as documents_router
from retail_ledger.api.routes.inventory import router as inventory_router
from retail_ledger.api.routes.ledger import router as ledger_router
from retail_ledger.api.routes.parties import router as parties_router
from retail_ledger.core.config import settings
from retail_ledger.core.logging import setup_logging
from retail_ledger.core.permissions import SYSTEM_ACTOR
from retail_ledger.db.database import SessionLocal, transaction
from retail_ledger.schemas.reconciliation import ReconcileScope
from retail_ledger.services.errors import (
    AmountExceedsBalanceError,
    DocumentNumberConflictError,
    LedgerError,
    NotFoundError,
    OrphanedReferenceError,
    PermissionDenied,
    StockError,
    ValidationError,
)
from retail_ledger.services.general_ledger import seed_chart_of_accounts
from retail_ledger.services.reconciliation import reconcile

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    PermissionDenied: status.HTTP_403_FORBIDDEN,
    StockError: status.HTTP_409_CONFLICT,
    AmountExceedsBalanceError: status.HTTP_409_CONFLICT,
    OrphanedReferenceError: status.HTTP_409_CONFLICT,
    DocumentNumberConflictError: status.HTTP_409_CONFLICT,
}


def _seed_accounts() -> None:
    db = SessionLocal()
    try:
        with transaction(db):
            seed_chart_of_accounts(db)
    finally:
        db.close()


async def _reconcile_worker() -> None:
    while True:
        db = SessionLocal()
        try:
            report = reconcile(db, ReconcileScope(), SYSTEM_ACTOR)
            if not report.clean:
                logger.warning(
                    "Scheduled reconciliation: corrected=%s orphaned=%s failures=%s",
                    len(report.corrected_fields),
                    len(report.orphaned_entries),
                    len(report.failures),
                )
        except Exception:
            logger.exception("Scheduled reconciliation failed")
        finally:
            db.close()
        await asyncio.sleep(max(60, settings.reconcile_interval_minutes * 60))


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    _seed_accounts()
    task: asyncio.Task | None = None
    if settings.reconcile_enabled:
        task = asyncio.create_task(_reconcile_worker())
    try:
        yield
    finally:
        if task:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(inventory_router)
app.include_router(documents_router)
app.include_router(parties_router)
app.include_router(ledger_router)


@app.exception_handler(LedgerError)
async def ledger_error_handler(_: Request, exc: LedgerError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "ok"}
