"""Read-through proxy to Teller for a saved enrollment."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tellersync.core.database import get_db
from tellersync.core.deps import get_teller_client, teller_http_error
from tellersync.services.credentials import normalize_label, resolve_credential
from tellersync.services.teller import TellerClient, TellerError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.get("")
def list_accounts(
    label: str = Query(default="default"),
    db: Session = Depends(get_db),
    client: TellerClient = Depends(get_teller_client),
):
    try:
        token, _ = resolve_credential(db, label=normalize_label(label))
        return client.list_accounts(token)
    except TellerError as exc:
        logger.error("GET /accounts failed: %s", exc)
        raise teller_http_error(exc, missing_status=404, pass_client_errors=True)


@router.get("/{account_id}/transactions")
def list_transactions(
    account_id: str,
    label: str = Query(default="default"),
    count: int | None = Query(default=None, gt=0),
    from_id: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    # from/to: older spellings of start_date/end_date
    from_: str | None = Query(default=None, alias="from"),
    to: str | None = None,
    db: Session = Depends(get_db),
    client: TellerClient = Depends(get_teller_client),
):
    try:
        token, _ = resolve_credential(db, label=normalize_label(label))
        return client.list_transactions(
            account_id,
            token,
            count=count,
            from_id=from_id,
            start_date=start_date or from_,
            end_date=end_date or to,
        )
    except TellerError as exc:
        logger.error("GET /accounts/%s/transactions failed: %s", account_id, exc)
        raise teller_http_error(exc, missing_status=404, pass_client_errors=True)
