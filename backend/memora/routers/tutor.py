from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..gemini_client import GeminiClient
from ..models import ChatMessage, ChatSession, UploadedFile
from ..serializers import chat_message_dict, chat_session_dict, file_dict
from ..tutor import APOLOGY, GENERATION_CONFIG, SAFETY_SETTINGS, build_contents, session_title
from ..uploads import owned_files, store_batch, validate_batch
from .auth import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tutor", tags=["tutor"])


class ChatRequest(BaseModel):
	message: str
	sessionId: Optional[str] = None
	fileIds: List[str] = Field(default_factory=list)


def _owned_session(db: Session, user: CurrentUser, session_id: str) -> ChatSession:
	session = (
		db.query(ChatSession)
		.filter(ChatSession.id == session_id, ChatSession.user_id == user.id, ChatSession.is_deleted.is_(False))
		.first()
	)
	if session is None:
		raise HTTPException(status_code=404, detail="Chat session not found")
	return session


def _messages(db: Session, session_id: str) -> List[ChatMessage]:
	return (
		db.query(ChatMessage)
		.filter(ChatMessage.session_id == session_id, ChatMessage.is_deleted.is_(False))
		.order_by(ChatMessage.created_at.asc())
		.all()
	)


async def _ask_tutor(contents) -> str:
	client = GeminiClient()
	try:
		return await client.generate_chat(
			contents,
			generation_config=GENERATION_CONFIG,
			safety_settings=SAFETY_SETTINGS,
		)
	finally:
		await client.aclose()


@router.post("/upload")
async def upload_file(
	files: List[UploadFile] = File(...),
	user: CurrentUser = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	validate_batch(files)
	rows = await store_batch(db, user.id, files)
	db.commit()
	return {"message": "Files uploaded successfully", "files": [file_dict(r) for r in rows]}


@router.get("/files")
async def user_files(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = (
		db.query(UploadedFile)
		.filter(UploadedFile.user_id == user.id, UploadedFile.is_deleted.is_(False))
		.order_by(UploadedFile.created_at.desc())
		.all()
	)
	return {"files": [file_dict(r) for r in rows]}


@router.post("/chat")
async def chat(req: ChatRequest, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	message = req.message or ""
	if not message.strip():
		raise HTTPException(status_code=400, detail="Message is required")

	if req.sessionId:
		session = _owned_session(db, user, req.sessionId)
	else:
		session = ChatSession(user_id=user.id, title=session_title(message), last_message_at=datetime.utcnow())
		db.add(session)
		db.flush()

	if req.fileIds:
		found = owned_files(db, user.id, req.fileIds)
		if len(found) != len(set(req.fileIds)):
			raise HTTPException(status_code=404, detail="One or more files were not found")
		unreadable = [f.original_name for f in found if not f.is_processed]
		if unreadable:
			raise HTTPException(
				status_code=400,
				detail=f"No text could be extracted from: {', '.join(unreadable)}",
			)
		attached = list(dict.fromkeys(session.file_id_list + [f.id for f in found]))
		session.file_ids = json.dumps(attached)
	documents = [f for f in owned_files(db, user.id, session.file_id_list) if f.is_processed]

	history = _messages(db, session.id)
	db.add(ChatMessage(session_id=session.id, user_id=user.id, role="user", content=message))
	db.commit()

	contents = build_contents(message, history, documents)
	try:
		reply = await _ask_tutor(contents)
	except Exception as e:
		logger.error("Tutor reply failed for session %s: %s", session.id, e)
		# Failed exchanges are kept in the transcript but do not count as activity
		db.add(ChatMessage(session_id=session.id, user_id=user.id, role="assistant", content=APOLOGY))
		db.commit()
		return {"sessionId": session.id, "response": APOLOGY, "error": str(e)}

	ai_message = ChatMessage(session_id=session.id, user_id=user.id, role="assistant", content=reply)
	db.add(ai_message)
	session.message_count = (session.message_count or 0) + 2
	session.last_message_at = datetime.utcnow()
	db.commit()
	return {"sessionId": session.id, "response": reply, "messageId": ai_message.id}


@router.get("/sessions/recent")
async def recent_sessions(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = (
		db.query(ChatSession)
		.filter(ChatSession.user_id == user.id, ChatSession.is_deleted.is_(False))
		.order_by(ChatSession.last_message_at.desc())
		.limit(10)
		.all()
	)
	return {"sessions": [chat_session_dict(s) for s in rows]}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	session = _owned_session(db, user, session_id)
	return {
		"session": chat_session_dict(session),
		"messages": [chat_message_dict(m) for m in _messages(db, session.id)],
	}


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	session = _owned_session(db, user, session_id)
	session.is_deleted = True
	db.query(ChatMessage).filter(ChatMessage.session_id == session.id).update(
		{ChatMessage.is_deleted: True}, synchronize_session=False
	)
	db.commit()
	return {"message": "Chat session deleted successfully"}


@router.get("/stats")
async def chat_stats(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	total_sessions = (
		db.query(ChatSession).filter(ChatSession.user_id == user.id, ChatSession.is_deleted.is_(False)).count()
	)
	total_messages = (
		db.query(ChatMessage).filter(ChatMessage.user_id == user.id, ChatMessage.is_deleted.is_(False)).count()
	)
	latest = (
		db.query(ChatSession)
		.filter(ChatSession.user_id == user.id, ChatSession.is_deleted.is_(False))
		.order_by(ChatSession.last_message_at.desc())
		.first()
	)
	return {
		"totalSessions": total_sessions,
		"totalMessages": total_messages,
		"lastActivity": latest.last_message_at if latest else None,
	}
