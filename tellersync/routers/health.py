from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from tellersync.core.database import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"ok": True}


@router.get("/health/db")
def health_db(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True, "database": "connected"}
