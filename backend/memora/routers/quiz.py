from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import IncompleteAnswersError
from ..models import Quiz, QuizAttempt, UploadedFile
from ..quiz_generation import DIFFICULTIES, QUESTION_TYPES, QuizSettings, run_quiz_generation
from ..quiz_session import SessionOutcome, active_progress, save_progress, start_or_resume, submit_attempt
from ..serializers import attempt_detail, attempt_dict, file_dict, progress_dict, quiz_detail, quiz_summary
from ..settings import settings
from ..uploads import owned_files, store_batch, validate_batch
from .auth import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quiz", tags=["quiz"])


class GenerateRequest(BaseModel):
	fileIds: List[str] = Field(default_factory=list)
	quizType: Union[str, List[str]] = "multiple-choice"
	numQuestions: int = 10
	difficulty: str = "medium"
	timeLimit: Union[int, str, None] = None
	subject: Optional[str] = None
	title: Optional[str] = None


class AnswerIn(BaseModel):
	question_id: str
	user_answer: Optional[str] = ""
	time_spent: int = 0


class SubmitRequest(BaseModel):
	answers: List[AnswerIn] = Field(default_factory=list)
	startedAt: Optional[datetime] = None
	completedAt: Optional[datetime] = None
	forcedByTimer: bool = False


class ProgressRequest(BaseModel):
	answers: Dict[str, Optional[str]] = Field(default_factory=dict)
	currentQuestionIndex: int = 0
	timeRemaining: Optional[int] = None


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
	if value is None or value.tzinfo is None:
		return value
	return (value - value.utcoffset()).replace(tzinfo=None)


def _quiz_types(value: Union[str, List[str]]) -> List[str]:
	types = [value] if isinstance(value, str) else list(value)
	if not types or any(t not in QUESTION_TYPES for t in types):
		raise HTTPException(status_code=400, detail=f"quizType must be one or more of {list(QUESTION_TYPES)}")
	# Keep order, drop duplicates
	return list(dict.fromkeys(types))


def _time_limit(value: Union[int, str, None]) -> Optional[int]:
	if value is None or (isinstance(value, str) and value.strip().lower() in ("", "none")):
		return None
	try:
		minutes = int(value)
	except (TypeError, ValueError):
		raise HTTPException(status_code=400, detail="timeLimit must be a number of minutes or 'none'")
	if minutes <= 0:
		raise HTTPException(status_code=400, detail="timeLimit must be positive")
	return minutes


def _owned_quiz(db: Session, user: CurrentUser, quiz_id: str, *, completed: bool = True) -> Quiz:
	q = db.query(Quiz).filter(Quiz.id == quiz_id, Quiz.user_id == user.id, Quiz.is_deleted.is_(False))
	if completed:
		q = q.filter(Quiz.status == "completed")
	quiz = q.first()
	if quiz is None:
		raise HTTPException(status_code=404, detail="Quiz not found")
	return quiz


def _owned_attempt(db: Session, user: CurrentUser, attempt_id: str) -> QuizAttempt:
	attempt = (
		db.query(QuizAttempt)
		.filter(QuizAttempt.id == attempt_id, QuizAttempt.user_id == user.id, QuizAttempt.is_deleted.is_(False))
		.first()
	)
	if attempt is None:
		raise HTTPException(status_code=404, detail="Attempt not found")
	return attempt


def _user_attempts(db: Session, user: CurrentUser):
	return (
		db.query(QuizAttempt)
		.filter(QuizAttempt.user_id == user.id, QuizAttempt.is_deleted.is_(False))
		.order_by(QuizAttempt.created_at.desc())
	)


def _outcome(outcome: SessionOutcome) -> dict:
	if outcome.expired:
		return {"expired": True, "progress": None, "attempt": attempt_detail(outcome.attempt)}
	return {"expired": False, "progress": progress_dict(outcome.progress), "attempt": None}


# ---- files ----

@router.post("/upload")
async def upload_files(
	files: List[UploadFile] = File(...),
	user: CurrentUser = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	validate_batch(files)
	rows = await store_batch(db, user.id, files)
	db.commit()
	logger.info("User %s uploaded %d file(s), %d with text", user.id, len(rows), sum(r.is_processed for r in rows))
	return {"message": "Files uploaded successfully", "files": [file_dict(r) for r in rows]}


@router.get("/files/recent")
async def recent_files(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = (
		db.query(UploadedFile)
		.filter(UploadedFile.user_id == user.id, UploadedFile.is_deleted.is_(False))
		.order_by(UploadedFile.created_at.desc())
		.limit(10)
		.all()
	)
	return {"files": [file_dict(r) for r in rows]}


@router.delete("/files/{file_id}")
async def delete_file(file_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = owned_files(db, user.id, [file_id])
	if not rows:
		raise HTTPException(status_code=404, detail="File not found")
	rows[0].is_deleted = True
	rows[0].deleted_at = datetime.utcnow()
	db.commit()
	return {"message": "File deleted successfully"}


# ---- generation ----

@router.post("/generate", status_code=202)
async def generate_quiz(
	req: GenerateRequest,
	background_tasks: BackgroundTasks,
	user: CurrentUser = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if not req.fileIds:
		raise HTTPException(status_code=400, detail="No files selected")
	types = _quiz_types(req.quizType)
	if req.difficulty not in DIFFICULTIES:
		raise HTTPException(status_code=400, detail=f"difficulty must be one of {list(DIFFICULTIES)}")
	if not 1 <= req.numQuestions <= settings.quiz_max_questions:
		raise HTTPException(status_code=400, detail=f"numQuestions must be between 1 and {settings.quiz_max_questions}")
	time_limit = _time_limit(req.timeLimit)

	files = owned_files(db, user.id, req.fileIds)
	if not files:
		raise HTTPException(status_code=404, detail="No valid files found")
	texts = [f.extracted_text for f in files if f.extracted_text]
	if not texts:
		raise HTTPException(
			status_code=400,
			detail="No text content found in uploaded files. Please upload files with text content.",
		)

	now = datetime.utcnow()
	quiz = Quiz(
		user_id=user.id,
		title=(req.title or "").strip() or f"Quiz - {now:%m/%d/%Y}",
		subject=(req.subject or "").strip() or None,
		quiz_type=json.dumps(types),
		difficulty=req.difficulty,
		time_limit=time_limit,
		num_questions=req.numQuestions,
		source_files=json.dumps([
			{
				"filename": f.filename,
				"original_name": f.original_name,
				"file_path": f.file_path,
				"uploaded_at": f.created_at.isoformat() if f.created_at else None,
			}
			for f in files
		]),
		status="generating",
	)
	db.add(quiz)
	db.commit()
	logger.info("Quiz %s queued for generation from %d file(s)", quiz.id, len(files))

	background_tasks.add_task(
		run_quiz_generation,
		quiz.id,
		texts,
		QuizSettings(num_questions=req.numQuestions, difficulty=req.difficulty, quiz_types=types),
	)
	return {"message": "Quiz generation started", "quizId": quiz.id, "status": "generating"}


# ---- listings (static paths before /{quiz_id}) ----

@router.get("/my-quizzes")
async def my_quizzes(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = (
		db.query(Quiz)
		.filter(Quiz.user_id == user.id, Quiz.is_deleted.is_(False), Quiz.status == "completed")
		.order_by(Quiz.created_at.desc())
		.all()
	)
	return {"quizzes": [quiz_summary(q) for q in rows]}


@router.get("/history")
async def quiz_history(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	return {"attempts": [attempt_dict(a) for a in _user_attempts(db, user).limit(20)]}


@router.get("/attempts")
async def all_attempts(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	return {"attempts": [attempt_dict(a) for a in _user_attempts(db, user).all()]}


@router.get("/attempts/{attempt_id}")
async def get_attempt(attempt_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	return {"attempt": attempt_detail(_owned_attempt(db, user, attempt_id))}


@router.delete("/attempts/{attempt_id}")
async def delete_attempt(attempt_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	attempt = _owned_attempt(db, user, attempt_id)
	attempt.is_deleted = True
	attempt.deleted_at = datetime.utcnow()
	db.commit()
	return {"message": "Attempt deleted successfully"}


@router.get("/quiz/{quiz_id}/attempts")
async def quiz_attempts(quiz_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, user, quiz_id)
	rows = _user_attempts(db, user).filter(QuizAttempt.quiz_id == quiz.id).all()
	return {"attempts": [attempt_dict(a) for a in rows]}


# ---- single quiz ----

@router.get("/{quiz_id}/status")
async def quiz_status(quiz_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, user, quiz_id, completed=False)
	return {"quizId": quiz.id, "status": quiz.status, "error": quiz.generation_error}


@router.get("/{quiz_id}")
async def get_quiz(quiz_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	return {"quiz": quiz_detail(_owned_quiz(db, user, quiz_id))}


@router.delete("/{quiz_id}")
async def delete_quiz(quiz_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, user, quiz_id, completed=False)
	quiz.is_deleted = True
	quiz.deleted_at = datetime.utcnow()
	db.commit()
	return {"message": "Quiz deleted successfully"}


# ---- taking a quiz ----

@router.post("/{quiz_id}/start")
async def start_quiz(quiz_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, user, quiz_id)
	data = _outcome(start_or_resume(db, user.id, quiz))
	data["quiz"] = quiz_detail(quiz)
	return data


@router.post("/{quiz_id}/save-progress")
async def save_quiz_progress(
	quiz_id: str,
	req: ProgressRequest,
	user: CurrentUser = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	quiz = _owned_quiz(db, user, quiz_id)
	outcome = save_progress(
		db, user.id, quiz, req.answers,
		current_question_index=req.currentQuestionIndex,
		time_remaining=req.timeRemaining,
	)
	return _outcome(outcome)


@router.get("/{quiz_id}/progress")
async def get_quiz_progress(quiz_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	quiz = _owned_quiz(db, user, quiz_id)
	if active_progress(db, user.id, quiz.id) is None:
		return {"expired": False, "progress": None, "attempt": None}
	# Resuming refreshes the countdown and closes sessions that ran out
	return _outcome(start_or_resume(db, user.id, quiz))


@router.post("/{quiz_id}/submit", status_code=201)
async def submit_quiz(
	quiz_id: str,
	req: SubmitRequest,
	user: CurrentUser = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	quiz = _owned_quiz(db, user, quiz_id)
	try:
		attempt = submit_attempt(
			db, user.id, quiz,
			{a.question_id: a.user_answer for a in req.answers},
			time_spent={a.question_id: a.time_spent for a in req.answers},
			started_at=_naive_utc(req.startedAt),
			completed_at=_naive_utc(req.completedAt),
			force=req.forcedByTimer,
		)
	except IncompleteAnswersError as e:
		raise HTTPException(status_code=400, detail={"error": e.message, "unanswered": e.missing})
	return {"message": "Quiz submitted successfully", "attempt": attempt_detail(attempt)}
