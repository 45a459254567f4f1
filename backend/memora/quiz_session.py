"""
Server side of quiz taking.

A student works through a quiz inside a ``QuizProgress`` row: it is created
(or restored) when the quiz is opened, autosaved while answering and closed
when the attempt is submitted. For timed quizzes the countdown is derived
from ``start_time`` on the server, so a refreshed page resumes with the
right clock and a student who walks away is still graded: any request that
lands after the deadline, and the periodic housekeeping sweep, submit the
saved answers with ``forced_by_timer`` set.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from .errors import IncompleteAnswersError, QuizSessionError
from .models import AttemptAnswer, Quiz, QuizAttempt, QuizProgress, QuizQuestion
from .quiz_generation import FILL_BLANK
from .settings import settings

logger = logging.getLogger(__name__)


@dataclass
class SessionOutcome:
	"""Either the live progress row or, if the clock ran out, the attempt."""
	progress: Optional[QuizProgress] = None
	attempt: Optional[QuizAttempt] = None

	@property
	def expired(self) -> bool:
		return self.attempt is not None


def round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def _normalize_blank(text: str) -> str:
	return " ".join(text.split()).casefold()


def grade_answer(question: QuizQuestion, answer: Optional[str]) -> bool:
	given = (answer or "").strip()
	if not given:
		return False
	if question.question_type == FILL_BLANK:
		return _normalize_blank(given) == _normalize_blank(question.correct_answer)
	return given == question.correct_answer.strip()


def deadline_for(quiz: Quiz, started_at: datetime) -> Optional[datetime]:
	if not quiz.time_limit:
		return None
	return started_at + timedelta(minutes=quiz.time_limit)


def seconds_remaining(quiz: Quiz, started_at: datetime, now: datetime) -> Optional[int]:
	deadline = deadline_for(quiz, started_at)
	if deadline is None:
		return None
	return max(0, int(math.ceil((deadline - now).total_seconds())))


def _is_expired(quiz: Quiz, started_at: datetime, now: datetime) -> bool:
	deadline = deadline_for(quiz, started_at)
	return deadline is not None and now >= deadline


def _question_ids(quiz: Quiz) -> List[str]:
	return [q.id for q in quiz.questions]


def _restrict(quiz: Quiz, answers: Mapping[str, object]) -> Dict[str, str]:
	ids = set(_question_ids(quiz))
	return {str(k): "" if v is None else str(v) for k, v in answers.items() if str(k) in ids}


def active_progress(db: Session, user_id: str, quiz_id: str) -> Optional[QuizProgress]:
	return (
		db.query(QuizProgress)
		.filter(
			QuizProgress.quiz_id == quiz_id,
			QuizProgress.user_id == user_id,
			QuizProgress.is_completed.is_(False),
		)
		.order_by(QuizProgress.created_at.desc())
		.first()
	)


def _latest_submitted(db: Session, user_id: str, quiz_id: str) -> Optional[QuizAttempt]:
	row = (
		db.query(QuizProgress)
		.filter(
			QuizProgress.quiz_id == quiz_id,
			QuizProgress.user_id == user_id,
			QuizProgress.is_completed.is_(True),
			QuizProgress.attempt_id.isnot(None),
		)
		.order_by(QuizProgress.last_updated.desc())
		.first()
	)
	return db.get(QuizAttempt, row.attempt_id) if row is not None else None


def _new_progress(db: Session, user_id: str, quiz: Quiz, now: datetime) -> QuizProgress:
	progress = QuizProgress(
		quiz_id=quiz.id,
		user_id=user_id,
		current_question_index=0,
		answers=json.dumps({}),
		start_time=now,
		time_remaining=seconds_remaining(quiz, now, now),
		last_updated=now,
	)
	db.add(progress)
	return progress


def start_or_resume(db: Session, user_id: str, quiz: Quiz, now: Optional[datetime] = None) -> SessionOutcome:
	now = now or datetime.utcnow()
	progress = active_progress(db, user_id, quiz.id)
	if progress is None:
		progress = _new_progress(db, user_id, quiz, now)
		db.commit()
		logger.info("Started quiz %s for user %s", quiz.id, user_id)
		return SessionOutcome(progress=progress)
	if _is_expired(quiz, progress.start_time, now):
		attempt = submit_attempt(db, user_id, quiz, {}, now=now, force=True)
		return SessionOutcome(attempt=attempt)
	progress.time_remaining = seconds_remaining(quiz, progress.start_time, now)
	db.commit()
	logger.info("Resumed quiz %s for user %s at question %d", quiz.id, user_id, progress.current_question_index)
	return SessionOutcome(progress=progress)


def save_progress(
	db: Session,
	user_id: str,
	quiz: Quiz,
	answers: Mapping[str, object],
	current_question_index: int = 0,
	time_remaining: Optional[int] = None,
	now: Optional[datetime] = None,
) -> SessionOutcome:
	now = now or datetime.utcnow()
	progress = active_progress(db, user_id, quiz.id)
	if progress is None:
		# Autosave never opens a session; a late save after submission gets the result
		attempt = _latest_submitted(db, user_id, quiz.id)
		if attempt is None:
			raise QuizSessionError("No active session for this quiz; start the quiz first")
		logger.info("Autosave for quiz %s arrived after submission %s", quiz.id, attempt.id)
		return SessionOutcome(attempt=attempt)
	merged = {**progress.answer_map, **_restrict(quiz, answers)}
	progress.answers = json.dumps(merged)
	if _is_expired(quiz, progress.start_time, now):
		attempt = submit_attempt(db, user_id, quiz, {}, now=now, force=True)
		return SessionOutcome(attempt=attempt)
	last_index = max(0, len(quiz.questions) - 1)
	progress.current_question_index = min(max(0, int(current_question_index)), last_index)
	server_remaining = seconds_remaining(quiz, progress.start_time, now)
	if server_remaining is not None and time_remaining is not None:
		server_remaining = min(server_remaining, max(0, int(time_remaining)))
	progress.time_remaining = server_remaining
	progress.last_updated = now
	db.commit()
	return SessionOutcome(progress=progress)


def unanswered(quiz: Quiz, answers: Mapping[str, str]) -> List[str]:
	return [qid for qid in _question_ids(quiz) if not (answers.get(qid) or "").strip()]


def submit_attempt(
	db: Session,
	user_id: str,
	quiz: Quiz,
	answers: Mapping[str, object],
	*,
	time_spent: Optional[Mapping[str, int]] = None,
	started_at: Optional[datetime] = None,
	completed_at: Optional[datetime] = None,
	force: bool = False,
	now: Optional[datetime] = None,
) -> QuizAttempt:
	"""Grade and record an attempt, closing any active progress row.

	The saved progress (when present) is authoritative for the start time and
	supplies answers the request does not repeat. Unanswered questions are
	rejected with ``IncompleteAnswersError`` unless the timer forced the
	submission; a client ``force`` flag only counts once the deadline is
	within the grace window.
	"""
	now = now or datetime.utcnow()
	progress = active_progress(db, user_id, quiz.id)
	if progress is not None:
		started = progress.start_time
		merged = {**progress.answer_map, **_restrict(quiz, answers)}
	else:
		started = started_at if started_at is not None and started_at <= now else now
		merged = _restrict(quiz, answers)

	deadline = deadline_for(quiz, started)
	forced = False
	if deadline is not None:
		grace = timedelta(seconds=settings.timer_grace_seconds)
		forced = now >= deadline or (force and now >= deadline - grace)

	missing = unanswered(quiz, merged)
	if missing and not forced:
		raise IncompleteAnswersError(missing)

	finished = now
	if completed_at is not None and started <= completed_at <= now:
		finished = completed_at
	if deadline is not None and finished > deadline:
		finished = deadline

	spent = time_spent or {}
	rows = []
	correct = 0
	for q in quiz.questions:
		given = merged.get(q.id, "")
		ok = grade_answer(q, given)
		correct += int(ok)
		rows.append(
			AttemptAnswer(
				question_id=q.id,
				user_answer=given,
				is_correct=ok,
				time_spent=max(0, int(spent.get(q.id, 0) or 0)),
			)
		)
	total = len(quiz.questions)
	attempt = QuizAttempt(
		quiz_id=quiz.id,
		user_id=user_id,
		score=round_half_up(correct / total * 100) if total else 0,
		total_questions=total,
		correct_answers=correct,
		time_taken=max(0, int((finished - started).total_seconds())),
		started_at=started,
		completed_at=finished,
		forced_by_timer=forced,
		answers=rows,
	)
	db.add(attempt)
	db.flush()
	if progress is not None:
		progress.answers = json.dumps(merged)
		progress.is_completed = True
		progress.attempt_id = attempt.id
		progress.time_remaining = seconds_remaining(quiz, started, now)
		progress.last_updated = now
	db.commit()
	logger.info(
		"Quiz %s submitted by %s: %d/%d (score %d%s)",
		quiz.id, user_id, correct, total, attempt.score, ", forced by timer" if forced else "",
	)
	return attempt


def finalize_expired_sessions(db: Session, now: Optional[datetime] = None) -> int:
	"""Submit every timed session whose deadline (plus grace) has passed."""
	now = now or datetime.utcnow()
	grace = timedelta(seconds=settings.timer_grace_seconds)
	rows = (
		db.query(QuizProgress)
		.join(Quiz, Quiz.id == QuizProgress.quiz_id)
		.filter(QuizProgress.is_completed.is_(False), Quiz.time_limit.isnot(None))
		.all()
	)
	finalized = 0
	for progress in rows:
		quiz = progress.quiz
		deadline = deadline_for(quiz, progress.start_time)
		if deadline is None or now < deadline + grace:
			continue
		if quiz.is_deleted or quiz.status != "completed":
			progress.is_completed = True
			db.commit()
			continue
		submit_attempt(db, progress.user_id, quiz, {}, force=True, now=now)
		finalized += 1
	return finalized
