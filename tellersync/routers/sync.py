"""
Sync entry points.

Both endpoints answer 200 whenever the run itself executed; accounts that
failed are listed in ``errors``. Only credential problems (400/401) and a
failed account listing (502) are reported as HTTP errors.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tellersync.core.config import settings
from tellersync.core.database import get_db
from tellersync.core.deps import get_sync_engine, teller_http_error
from tellersync.schemas.sync import SyncRequest, SyncResponse
from tellersync.services.credentials import resolve_credential
from tellersync.services.sync import MODE_DELTA, MODE_FULL, SyncEngine
from tellersync.services.teller import TellerError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])


def _run(mode: str, payload: SyncRequest | None, db: Session, engine: SyncEngine) -> SyncResponse:
    payload = payload or SyncRequest()
    page_size = payload.page_size or settings.sync_page_size
    try:
        token, label = resolve_credential(db, payload.access_token, payload.label)
        run = engine.run_full_sync if mode == MODE_FULL else engine.run_delta_sync
        summary = run(token, page_size)
    except TellerError as exc:
        logger.error("POST sync (%s) failed: %s", mode, exc)
        raise teller_http_error(exc)

    if summary.errors:
        logger.warning(
            "%s sync for %s finished with %d failed account(s)",
            mode, label or "explicit token", len(summary.errors),
        )
    return SyncResponse(**summary.to_response())


@router.post("/sync", response_model=SyncResponse)
def full_sync(
    payload: SyncRequest | None = None,
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
):
    return _run(MODE_FULL, payload, db, engine)


@router.post("/sync-delta", response_model=SyncResponse)
def delta_sync(
    payload: SyncRequest | None = None,
    db: Session = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
):
    return _run(MODE_DELTA, payload, db, engine)
