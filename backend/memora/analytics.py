from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models import ChatSession, Quiz, QuizAttempt, UploadedFile
from .quiz_session import round_half_up

_TIME_UNITS = [
	("year", 31536000),
	("month", 2592000),
	("week", 604800),
	("day", 86400),
	("hour", 3600),
	("minute", 60),
]

RANGE_DAYS = {"week": 7, "month": 30}


def format_time_ago(when: Optional[datetime], now: Optional[datetime] = None) -> str:
	if when is None:
		return "Just now"
	seconds = int(((now or datetime.utcnow()) - when).total_seconds())
	for unit, size in _TIME_UNITS:
		n = seconds // size
		if n >= 1:
			return f"{n} {unit}{'s' if n > 1 else ''} ago"
	return "Just now"


def format_file_size(size: int) -> str:
	if not size:
		return "0 Bytes"
	units = ["Bytes", "KB", "MB", "GB"]
	i = 0
	while size >= 1024 ** (i + 1) and i < len(units) - 1:
		i += 1
	return f"{round(size / 1024 ** i, 2):g} {units[i]}"


def _attempts(db: Session, user_id: str):
	return db.query(QuizAttempt).filter(QuizAttempt.user_id == user_id, QuizAttempt.is_deleted.is_(False))


def score_change(db: Session, user_id: str, current_score: float) -> int:
	previous = _attempts(db, user_id).order_by(QuizAttempt.completed_at.desc()).offset(1).limit(5).all()
	if not previous:
		return 0
	avg = sum(a.score for a in previous) / len(previous)
	return round_half_up(current_score - avg)


def recent_activities(db: Session, user_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
	activities: List[Dict[str, Any]] = []
	for attempt in _attempts(db, user_id).order_by(QuizAttempt.completed_at.desc()).limit(5):
		title = attempt.quiz.title if attempt.quiz else "Unknown"
		activities.append({
			"type": "quiz_completed",
			"title": f"Completed Quiz: {title}",
			"description": f"Score: {attempt.score}% | {format_time_ago(attempt.completed_at, now)}",
			"timestamp": attempt.completed_at,
			"icon": "CheckCircle",
		})
	chats = (
		db.query(ChatSession)
		.filter(ChatSession.user_id == user_id, ChatSession.is_deleted.is_(False), ChatSession.message_count > 0)
		.order_by(ChatSession.last_message_at.desc())
		.limit(5)
	)
	for chat in chats:
		activities.append({
			"type": "chat_message",
			"title": f"Asked AI about {chat.title}",
			"description": format_time_ago(chat.last_message_at, now),
			"timestamp": chat.last_message_at,
			"icon": "MessageSquare",
		})
	quizzes = (
		db.query(Quiz)
		.filter(Quiz.user_id == user_id, Quiz.is_deleted.is_(False), Quiz.status == "completed")
		.order_by(Quiz.created_at.desc())
		.limit(5)
	)
	for quiz in quizzes:
		activities.append({
			"type": "quiz_created",
			"title": f"Created Quiz: {quiz.title}",
			"description": f"{len(quiz.questions)} questions | {format_time_ago(quiz.created_at, now)}",
			"timestamp": quiz.created_at,
			"icon": "Book",
		})
	uploads = (
		db.query(UploadedFile)
		.filter(UploadedFile.user_id == user_id, UploadedFile.is_deleted.is_(False))
		.order_by(UploadedFile.created_at.desc())
		.limit(5)
	)
	for f in uploads:
		activities.append({
			"type": "file_uploaded",
			"title": f"Uploaded {f.original_name}",
			"description": f"{format_file_size(f.file_size)} | {format_time_ago(f.created_at, now)}",
			"timestamp": f.created_at,
			"icon": "Upload",
		})
	activities.sort(key=lambda a: a["timestamp"], reverse=True)
	return activities[:10]


def dashboard_stats(db: Session, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
	total_quizzes = db.query(Quiz).filter(Quiz.user_id == user_id, Quiz.is_deleted.is_(False)).count()
	completed = _attempts(db, user_id).count()
	avg_score, total_correct, total_questions = (
		db.query(func.avg(QuizAttempt.score), func.sum(QuizAttempt.correct_answers), func.sum(QuizAttempt.total_questions))
		.filter(QuizAttempt.user_id == user_id, QuizAttempt.is_deleted.is_(False))
		.one()
	)
	latest = _attempts(db, user_id).order_by(QuizAttempt.completed_at.desc()).first()
	recent_score = None
	if latest is not None:
		recent_score = {
			"score": latest.score,
			"title": latest.quiz.title if latest.quiz else "Unknown Quiz",
			"completedAt": latest.completed_at,
			"percentageChange": score_change(db, user_id, latest.score),
		}
	return {
		"totalQuizzes": total_quizzes,
		"completedQuizzes": completed,
		"averageScore": round_half_up(avg_score) if avg_score is not None else 0,
		"accuracy": round_half_up(total_correct / total_questions * 100) if total_questions else 0,
		"recentQuizScore": recent_score,
		"recentActivities": recent_activities(db, user_id, now),
	}


def progress_attempts(db: Session, user_id: str, range_name: str = "all", now: Optional[datetime] = None) -> List[QuizAttempt]:
	q = _attempts(db, user_id)
	days = RANGE_DAYS.get(range_name)
	if days is not None:
		q = q.filter(QuizAttempt.completed_at >= (now or datetime.utcnow()) - timedelta(days=days))
	return q.order_by(QuizAttempt.completed_at.desc()).all()


def subject_of(attempt: QuizAttempt) -> str:
	return (attempt.quiz.subject if attempt.quiz and attempt.quiz.subject else None) or "General"


def progress_statistics(attempts: List[QuizAttempt]) -> Dict[str, Any]:
	"""Summary over attempts ordered newest first."""
	if not attempts:
		return {
			"totalAttempts": 0,
			"averageScore": 0,
			"averageTime": 0,
			"improvement": 0,
			"strongSubjects": [],
			"weakSubjects": [],
		}
	total = len(attempts)
	improvement = 0
	if total >= 4:
		half = total // 2
		recent, older = attempts[:half], attempts[half:]
		improvement = round_half_up(
			sum(a.score for a in recent) / len(recent) - sum(a.score for a in older) / len(older)
		)
	by_subject: Dict[str, List[int]] = {}
	for a in attempts:
		by_subject.setdefault(subject_of(a), []).append(a.score)
	ranked = sorted(by_subject.items(), key=lambda kv: sum(kv[1]) / len(kv[1]), reverse=True)
	subjects = [s for s, _ in ranked]
	return {
		"totalAttempts": total,
		"averageScore": round_half_up(sum(a.score for a in attempts) / total),
		"averageTime": round_half_up(sum(a.time_taken for a in attempts) / total),
		"improvement": improvement,
		"strongSubjects": subjects[:2],
		"weakSubjects": list(reversed(subjects[-2:])),
	}


def insight_payload(attempts: List[QuizAttempt], statistics: Dict[str, Any]) -> Dict[str, Any]:
	per_subject: Dict[str, Dict[str, Any]] = {}
	for a in attempts:
		data = per_subject.setdefault(subject_of(a), {"scores": [], "time": 0, "totalAttempts": 0})
		data["scores"].append(a.score)
		data["time"] += a.time_taken
		data["totalAttempts"] += 1
	performance = {
		subject: {
			"avgScore": round_half_up(sum(d["scores"]) / len(d["scores"])),
			"avgTime": round_half_up(d["time"] / d["totalAttempts"] / 60),
			"totalAttempts": d["totalAttempts"],
		}
		for subject, d in per_subject.items()
	}
	return {
		"totalAttempts": statistics["totalAttempts"],
		"averageScore": statistics["averageScore"],
		"improvement": statistics["improvement"],
		"strongSubjects": statistics["strongSubjects"],
		"weakSubjects": statistics["weakSubjects"],
		"recentScores": [
			{
				"title": a.quiz.title if a.quiz else "Unknown Quiz",
				"subject": subject_of(a),
				"score": a.score,
				"date": a.completed_at.isoformat(),
			}
			for a in attempts[:10]
		],
		"subjectPerformance": performance,
	}
