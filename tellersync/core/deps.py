from fastapi import HTTPException

from tellersync.services.sync import SyncEngine, build_sync_engine
from tellersync.services.teller import CredentialError, TellerClient, UpstreamError, build_teller_client


def get_teller_client() -> TellerClient:
    return build_teller_client()


def get_sync_engine() -> SyncEngine:
    return build_sync_engine()


def teller_http_error(
    exc: Exception, missing_status: int = 400, pass_client_errors: bool = False
) -> HTTPException:
    """Translate a Teller failure into the HTTP error the caller sees.

    With ``pass_client_errors`` an upstream 4xx keeps its status (proxy routes);
    otherwise every upstream failure is a 502.
    """
    if isinstance(exc, CredentialError):
        if exc.status_code in (401, 403):
            return HTTPException(status_code=401, detail=str(exc))
        return HTTPException(status_code=missing_status, detail=str(exc))
    if isinstance(exc, UpstreamError):
        if pass_client_errors and exc.status_code and 400 <= exc.status_code < 500:
            return HTTPException(status_code=exc.status_code, detail=str(exc))
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail="internal_error")
