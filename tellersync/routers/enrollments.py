from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tellersync.core.database import get_db
from tellersync.schemas.sync import SaveTokenRequest, SaveTokenResponse
from tellersync.services.credentials import save_token

router = APIRouter(tags=["enrollments"])


@router.post("/save-token", response_model=SaveTokenResponse)
def save_access_token(payload: SaveTokenRequest, db: Session = Depends(get_db)):
    """Store the access token handed over by Teller Connect."""
    if not payload.access_token:
        raise HTTPException(status_code=400, detail="missing access_token")
    enrollment = save_token(db, payload.access_token, payload.label)
    db.commit()
    return SaveTokenResponse(label=enrollment.label)
