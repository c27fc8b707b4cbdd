from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockledger.app.api.v1.router import router as v1_router
from stockledger.app.core.config import get_settings
from stockledger.app.core.errors import (
    ApprovalRequired,
    InsufficientStock,
    InvalidStateTransition,
    LedgerError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from stockledger.app.core.logging import configure_logging

# l'ordre compte : sous-classes avant LedgerError
STATUS_CODES = (
    (ValidationError, 400),
    (PermissionDenied, 403),
    (NotFoundError, 404),
    (InsufficientStock, 409),
    (InvalidStateTransition, 409),
    (ApprovalRequired, 409),
)


def status_for(exc: LedgerError) -> int:
    for cls, code in STATUS_CODES:
        if isinstance(exc, cls):
            return code
    return 500


settings = get_settings()
configure_logging(settings)

app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())
