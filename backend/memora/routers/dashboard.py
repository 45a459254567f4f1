from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..analytics import dashboard_stats
from ..db import get_db
from .auth import CurrentUser, get_current_user

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
async def stats(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	return dashboard_stats(db, user.id)
