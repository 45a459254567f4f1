from __future__ import annotations
from typing import Any, Dict, Optional

from .models import ChatMessage, ChatSession, Quiz, QuizAttempt, QuizProgress, QuizQuestion, UploadedFile


def file_dict(f: UploadedFile) -> Dict[str, Any]:
	return {
		"id": f.id,
		"original_name": f.original_name,
		"filename": f.filename,
		"file_type": f.file_type,
		"file_size": f.file_size,
		"mime_type": f.mime_type,
		"is_processed": f.is_processed,
		"processing_error": f.processing_error,
		"extraction_method": f.extraction_method,
		"text_length": len(f.extracted_text or ""),
		"createdAt": f.created_at,
	}


def quiz_type_value(quiz: Quiz) -> Any:
	types = quiz.quiz_types
	return types[0] if len(types) == 1 else types


def quiz_summary(quiz: Quiz) -> Dict[str, Any]:
	return {
		"id": quiz.id,
		"title": quiz.title,
		"subject": quiz.subject,
		"quiz_type": quiz_type_value(quiz),
		"quiz_types": quiz.quiz_types,
		"difficulty": quiz.difficulty,
		"time_limit": quiz.time_limit,
		"status": quiz.status,
		"question_count": len(quiz.questions),
		"source_files": quiz.source_file_list,
		"createdAt": quiz.created_at,
	}


def question_dict(q: QuizQuestion, *, reveal: bool = False) -> Dict[str, Any]:
	data = {
		"id": q.id,
		"question_text": q.question_text,
		"question_type": q.question_type,
		"options": q.option_list,
	}
	if reveal:
		data["correct_answer"] = q.correct_answer
		data["explanation"] = q.explanation
	return data


def quiz_detail(quiz: Quiz, *, reveal: bool = False) -> Dict[str, Any]:
	data = quiz_summary(quiz)
	data["questions"] = [question_dict(q, reveal=reveal) for q in quiz.questions]
	return data


def progress_dict(p: Optional[QuizProgress]) -> Optional[Dict[str, Any]]:
	if p is None:
		return None
	return {
		"id": p.id,
		"quiz_id": p.quiz_id,
		"current_question_index": p.current_question_index,
		"answers": p.answer_map,
		"start_time": p.start_time,
		"time_remaining": p.time_remaining,
		"is_completed": p.is_completed,
		"last_updated": p.last_updated,
	}


def attempt_dict(a: QuizAttempt) -> Dict[str, Any]:
	quiz = a.quiz
	return {
		"id": a.id,
		"quiz_id": a.quiz_id,
		"quiz": {
			"title": quiz.title,
			"difficulty": quiz.difficulty,
			"quiz_type": quiz_type_value(quiz),
			"subject": quiz.subject,
		} if quiz else None,
		"score": a.score,
		"total_questions": a.total_questions,
		"correct_answers": a.correct_answers,
		"time_taken": a.time_taken,
		"started_at": a.started_at,
		"completed_at": a.completed_at,
		"forced_by_timer": a.forced_by_timer,
	}


def attempt_detail(a: QuizAttempt) -> Dict[str, Any]:
	data = attempt_dict(a)
	by_question = {ans.question_id: ans for ans in a.answers}
	review = []
	for q in (a.quiz.questions if a.quiz else []):
		ans = by_question.get(q.id)
		item = question_dict(q, reveal=True)
		item["user_answer"] = ans.user_answer if ans else ""
		item["is_correct"] = bool(ans and ans.is_correct)
		item["time_spent"] = ans.time_spent if ans else 0
		review.append(item)
	data["answers"] = review
	return data


def chat_session_dict(s: ChatSession) -> Dict[str, Any]:
	return {
		"id": s.id,
		"title": s.title,
		"messageCount": s.message_count or 0,
		"fileIds": s.file_id_list,
		"createdAt": s.created_at,
		"lastMessageAt": s.last_message_at,
	}


def chat_message_dict(m: ChatMessage) -> Dict[str, Any]:
	return {"id": m.id, "role": m.role, "content": m.content, "timestamp": m.created_at}
