from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .models import Quiz, QuizProgress
from .quiz_session import finalize_expired_sessions
from .settings import settings

logger = logging.getLogger(__name__)


def purge_stale_progress(db: Session, now: Optional[datetime] = None) -> int:
	# Timed sessions are closed by the timer; only abandoned untimed ones linger
	now = now or datetime.utcnow()
	threshold = now - timedelta(days=settings.progress_retention_days)
	untimed = select(Quiz.id).where(Quiz.time_limit.is_(None))
	res = db.execute(
		delete(QuizProgress)
		.where(QuizProgress.is_completed.is_(False))
		.where(QuizProgress.last_updated < threshold)
		.where(QuizProgress.quiz_id.in_(untimed))
	)
	db.commit()
	return res.rowcount or 0


def run_housekeeping(db: Session, now: Optional[datetime] = None) -> dict:
	finalized = finalize_expired_sessions(db, now)
	purged = purge_stale_progress(db, now)
	if finalized or purged:
		logger.info("Housekeeping: %d expired session(s) submitted, %d stale progress row(s) purged", finalized, purged)
	return {"finalized": finalized, "purged": purged}
