"""Saved Teller access tokens (enrollments), encrypted at rest."""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from tellersync.core.security import decrypt_value, encrypt_value
from tellersync.models.teller import Enrollment
from tellersync.services.teller import CredentialError

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "default"


def normalize_label(label: str | None) -> str:
    return (label or DEFAULT_LABEL).strip().lower() or DEFAULT_LABEL


def save_token(db: Session, access_token: str, label: str | None = None) -> Enrollment:
    """Store (or replace) the access token for a label. Caller commits."""
    key = normalize_label(label)
    now = datetime.now(timezone.utc)
    enrollment = db.get(Enrollment, key)
    if enrollment:
        enrollment.encrypted_access_token = encrypt_value(access_token)
        enrollment.updated_at = now
        enrollment.error_code = None
    else:
        enrollment = Enrollment(
            label=key,
            encrypted_access_token=encrypt_value(access_token),
            created_at=now,
            updated_at=now,
        )
        db.add(enrollment)
    db.flush()
    logger.info("Saved Teller access token for label %r", key)
    return enrollment


def get_token(db: Session, label: str | None) -> str | None:
    enrollment = db.get(Enrollment, normalize_label(label))
    return decrypt_value(enrollment.encrypted_access_token) if enrollment else None


def resolve_credential(
    db: Session,
    access_token: str | None = None,
    label: str | None = None,
) -> tuple[str, str | None]:
    """
    Pick the credential for a run. Returns ``(access_token, label)``.

    An explicit token wins; then a label lookup; then the most recently saved
    enrollment. Raises CredentialError when nothing usable is found.
    """
    if access_token:
        return access_token, None

    if label:
        key = normalize_label(label)
        token = get_token(db, key)
        if not token:
            raise CredentialError(f'no token for label "{key}"')
        return token, key

    latest = db.execute(
        select(Enrollment).order_by(Enrollment.updated_at.desc()).limit(1)
    ).scalar_one_or_none()
    if not latest:
        raise CredentialError("missing access_token and no saved token")
    return decrypt_value(latest.encrypted_access_token), latest.label
