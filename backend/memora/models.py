from __future__ import annotations
import json
import uuid
from datetime import datetime
from typing import Any, Dict, List
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, Index
from sqlalchemy.orm import relationship
from .db import Base


def new_id() -> str:
	return uuid.uuid4().hex


def _load_json(raw: str | None, default: Any) -> Any:
	if not raw:
		return default
	try:
		return json.loads(raw)
	except ValueError:
		return default


class User(Base):
	__tablename__ = "users"
	id = Column(String(32), primary_key=True, default=new_id)
	email = Column(String(256), unique=True, index=True, nullable=False)
	username = Column(String(128), nullable=False)
	password_hash = Column(String(256), nullable=False)
	last_login = Column(DateTime, nullable=True)
	is_deleted = Column(Boolean, default=False, nullable=False)
	deleted_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# JWT jti
	session_id = Column(String(64), primary_key=True)
	user_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
	revoked = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UploadedFile(Base):
	__tablename__ = "uploaded_files"
	id = Column(String(32), primary_key=True, default=new_id)
	user_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
	original_name = Column(String(512), nullable=False)
	filename = Column(String(256), nullable=False)
	file_path = Column(String(1024), nullable=False)
	file_type = Column(String(16), nullable=True)
	file_size = Column(Integer, default=0, nullable=False)
	mime_type = Column(String(128), nullable=True)
	extracted_text = Column(Text, nullable=True)
	extraction_method = Column(String(32), nullable=True)
	is_processed = Column(Boolean, default=False, nullable=False)
	processing_error = Column(Text, nullable=True)
	is_deleted = Column(Boolean, default=False, nullable=False)
	deleted_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Quiz(Base):
	__tablename__ = "quizzes"
	__table_args__ = (Index("ix_quizzes_user_created", "user_id", "created_at"),)
	id = Column(String(32), primary_key=True, default=new_id)
	user_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
	title = Column(String(256), nullable=False)
	subject = Column(String(128), nullable=True)
	quiz_type = Column(Text, nullable=False)  # JSON list of question types
	difficulty = Column(String(16), nullable=False)
	time_limit = Column(Integer, nullable=True)  # minutes
	num_questions = Column(Integer, default=10, nullable=False)
	source_files = Column(Text, nullable=True)  # JSON list
	status = Column(String(16), default="generating", index=True, nullable=False)
	generation_error = Column(Text, nullable=True)
	is_deleted = Column(Boolean, default=False, nullable=False)
	deleted_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	questions = relationship(
		"QuizQuestion",
		back_populates="quiz",
		order_by="QuizQuestion.position",
		cascade="all, delete-orphan",
	)

	@property
	def quiz_types(self) -> List[str]:
		value = _load_json(self.quiz_type, [])
		if isinstance(value, str):
			return [value]
		return list(value)

	@property
	def source_file_list(self) -> List[Dict[str, Any]]:
		return _load_json(self.source_files, [])


class QuizQuestion(Base):
	__tablename__ = "quiz_questions"
	id = Column(String(32), primary_key=True, default=new_id)
	quiz_id = Column(String(32), ForeignKey("quizzes.id"), index=True, nullable=False)
	position = Column(Integer, default=0, nullable=False)
	question_text = Column(Text, nullable=False)
	question_type = Column(String(32), nullable=False)
	options = Column(Text, nullable=True)  # JSON list of strings
	correct_answer = Column(Text, nullable=False)
	explanation = Column(Text, default="", nullable=False)

	quiz = relationship("Quiz", back_populates="questions")

	@property
	def option_list(self) -> List[str]:
		return _load_json(self.options, [])


class QuizAttempt(Base):
	__tablename__ = "quiz_attempts"
	__table_args__ = (Index("ix_attempts_user_quiz_created", "user_id", "quiz_id", "created_at"),)
	id = Column(String(32), primary_key=True, default=new_id)
	quiz_id = Column(String(32), ForeignKey("quizzes.id"), nullable=False)
	user_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
	score = Column(Integer, nullable=False)
	total_questions = Column(Integer, nullable=False)
	correct_answers = Column(Integer, nullable=False)
	time_taken = Column(Integer, nullable=False)  # seconds
	started_at = Column(DateTime, nullable=False)
	completed_at = Column(DateTime, nullable=False)
	forced_by_timer = Column(Boolean, default=False, nullable=False)
	is_deleted = Column(Boolean, default=False, nullable=False)
	deleted_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	quiz = relationship("Quiz")
	answers = relationship("AttemptAnswer", back_populates="attempt", cascade="all, delete-orphan")


class AttemptAnswer(Base):
	__tablename__ = "attempt_answers"
	id = Column(String(32), primary_key=True, default=new_id)
	attempt_id = Column(String(32), ForeignKey("quiz_attempts.id"), index=True, nullable=False)
	question_id = Column(String(32), nullable=False)
	user_answer = Column(Text, default="", nullable=False)
	is_correct = Column(Boolean, nullable=False)
	time_spent = Column(Integer, default=0, nullable=False)

	attempt = relationship("QuizAttempt", back_populates="answers")


class QuizProgress(Base):
	__tablename__ = "quiz_progress"
	__table_args__ = (Index("ix_progress_quiz_user_completed", "quiz_id", "user_id", "is_completed"),)
	id = Column(String(32), primary_key=True, default=new_id)
	quiz_id = Column(String(32), ForeignKey("quizzes.id"), nullable=False)
	user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
	current_question_index = Column(Integer, default=0, nullable=False)
	answers = Column(Text, nullable=True)  # JSON map question_id -> answer
	start_time = Column(DateTime, nullable=False)
	time_remaining = Column(Integer, nullable=True)  # seconds
	is_completed = Column(Boolean, default=False, nullable=False)
	attempt_id = Column(String(32), nullable=True)
	last_updated = Column(DateTime, default=datetime.utcnow, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	quiz = relationship("Quiz")

	@property
	def answer_map(self) -> Dict[str, str]:
		return _load_json(self.answers, {})


class ChatSession(Base):
	__tablename__ = "chat_sessions"
	id = Column(String(32), primary_key=True, default=new_id)
	user_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
	title = Column(String(128), default="New Chat", nullable=False)
	message_count = Column(Integer, default=0, nullable=False)
	last_message_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	file_ids = Column(Text, nullable=True)  # JSON list of grounding documents
	is_deleted = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	@property
	def file_id_list(self) -> List[str]:
		return _load_json(self.file_ids, [])


class ChatMessage(Base):
	__tablename__ = "chat_messages"
	__table_args__ = (Index("ix_chat_messages_session_created", "session_id", "created_at"),)
	id = Column(String(32), primary_key=True, default=new_id)
	session_id = Column(String(32), ForeignKey("chat_sessions.id"), nullable=False)
	user_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
	role = Column(String(16), nullable=False)
	content = Column(Text, nullable=False)
	is_deleted = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
