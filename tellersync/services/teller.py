"""Teller API client — mutual-TLS HTTP over ``requests``.

Teller returns accounts as a JSON list and transactions newest-first. The
``from_id`` query parameter is an exclusive watermark: only transactions newer
than that id are returned.
"""

import atexit
import functools
import logging
import os
import tempfile
from typing import Any
from urllib.parse import quote

import requests

from tellersync.core.config import settings

logger = logging.getLogger(__name__)


# ─── Errors ────────────────────────────────────────────────────────────────

class TellerError(Exception):
    """Base class for failures talking to Teller."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CredentialError(TellerError):
    """Access token missing, unknown, or rejected by Teller. Fatal for a run."""


class UpstreamError(TellerError):
    """Non-2xx response, transport failure, or timeout."""


# ─── mTLS material ─────────────────────────────────────────────────────────

_materialized: list[str] = []


def _materialize_pem(pem: str, suffix: str) -> str:
    """Write PEM text to a private temp file and return its path (requests wants paths).

    The file is removed at interpreter exit by ``_cleanup_materialized``.
    """
    fd, path = tempfile.mkstemp(prefix="teller-", suffix=suffix)
    _materialized.append(path)
    with os.fdopen(fd, "w") as fh:
        fh.write(pem)
    return path


@atexit.register
def _cleanup_materialized() -> None:
    while _materialized:
        path = _materialized.pop()
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


def _pick(pem: str, path: str, suffix: str) -> str | None:
    if pem:
        return _materialize_pem(pem, suffix)
    if path and os.path.exists(path):
        return path
    return None


@functools.lru_cache(maxsize=1)
def _resolve_tls() -> tuple[tuple[str, str] | None, str | bool]:
    cert = _pick(settings.teller_client_cert, settings.teller_client_cert_path, ".pem")
    key = _pick(settings.teller_client_key, settings.teller_client_key_path, ".key")
    ca = _pick(settings.teller_ca_cert, settings.teller_ca_cert_path, ".pem")
    if not cert or not key:
        logger.warning(
            "Missing Teller mTLS cert or key. Set TELLER_CLIENT_CERT / TELLER_CLIENT_KEY "
            "(PEM text) or point TELLER_CLIENT_CERT_PATH / TELLER_CLIENT_KEY_PATH at files."
        )
        return None, ca or True
    return (cert, key), ca or True


# ─── Client ────────────────────────────────────────────────────────────────

class TellerClient:
    """Thin Teller REST client. One instance is safe to share across threads."""

    def __init__(
        self,
        base_url: str | None = None,
        cert: tuple[str, str] | None = None,
        verify: str | bool = True,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or settings.teller_api_url).rstrip("/")
        self.cert = cert
        self.verify = verify
        self.timeout = timeout if timeout is not None else settings.teller_timeout_seconds
        self._session = session or requests.Session()

    def _get(self, path: str, credential: str, params: dict | None = None) -> Any:
        if not credential:
            raise CredentialError("missing access token")
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.get(
                url,
                params={k: v for k, v in (params or {}).items() if v is not None},
                headers={"Authorization": f"Bearer {credential}"},
                cert=self.cert,
                verify=self.verify,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise UpstreamError(f"Teller request timed out after {self.timeout}s: {path}") from exc
        except requests.RequestException as exc:
            raise UpstreamError(f"Teller request failed: {exc}") from exc

        if resp.status_code in (401, 403):
            raise CredentialError(
                f"Teller rejected the access token ({resp.status_code})",
                status_code=resp.status_code,
            )
        if resp.status_code >= 300:
            raise UpstreamError(
                f"Teller {path} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(f"Teller {path} returned invalid JSON") from exc

    def list_accounts(self, credential: str) -> list[dict]:
        return self._get("/accounts", credential)

    def list_transactions(
        self,
        account_id: str,
        credential: str,
        count: int | None = None,
        from_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict]:
        """Transactions for one account, newest-first."""
        return self._get(
            f"/accounts/{quote(account_id, safe='')}/transactions",
            credential,
            params={
                "count": count,
                "from_id": from_id,
                "start_date": start_date,
                "end_date": end_date,
            },
        )


def build_teller_client() -> TellerClient:
    cert, verify = _resolve_tls()
    return TellerClient(cert=cert, verify=verify)
