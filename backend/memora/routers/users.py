from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import User
from .auth import CurrentUser, get_current_user, hash_password, password_problem, valid_email, verify_password

router = APIRouter(prefix="/users", tags=["users"])


class ProfileUpdate(BaseModel):
	username: Optional[str] = None
	email: Optional[str] = None
	currentPassword: Optional[str] = None
	newPassword: Optional[str] = None


def _load(db: Session, user: CurrentUser) -> User:
	row = db.get(User, user.id)
	if row is None or row.is_deleted:
		raise HTTPException(status_code=404, detail="User not found")
	return row


@router.get("/profile")
async def get_profile(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	row = _load(db, user)
	return {
		"id": row.id,
		"username": row.username,
		"email": row.email,
		"createdAt": row.created_at,
		"updatedAt": row.updated_at,
		"last_login": row.last_login,
	}


@router.put("/profile")
async def update_profile(req: ProfileUpdate, user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
	row = _load(db, user)
	username = req.username.strip() if req.username else None
	email = req.email.strip().lower() if req.email else None
	if username is not None and len(username) < 3:
		raise HTTPException(status_code=400, detail="Username must be at least 3 characters")
	if email:
		if not valid_email(email):
			raise HTTPException(status_code=400, detail="Please enter a valid email address")
		if email != row.email:
			taken = db.query(User).filter(User.email == email, User.id != row.id).first()
			if taken:
				raise HTTPException(status_code=409, detail="Email is already in use")
	if req.newPassword:
		if not req.currentPassword:
			raise HTTPException(status_code=400, detail="Current password is required to change password")
		if not verify_password(req.currentPassword, row.password_hash):
			raise HTTPException(status_code=401, detail="Current password is incorrect")
		problem = password_problem(req.newPassword)
		if problem:
			raise HTTPException(status_code=400, detail=problem)
		row.password_hash = hash_password(req.newPassword)
	if username:
		row.username = username
	if email:
		row.email = email
	db.commit()
	return {
		"success": True,
		"message": "Profile updated successfully",
		"data": {"user": {"id": row.id, "username": row.username, "email": row.email}},
	}
