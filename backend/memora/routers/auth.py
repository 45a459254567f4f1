from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import re
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from ..settings import settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..models import User, AuthSession

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)
logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SYMBOL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class CurrentUser(BaseModel):
	id: str
	email: str
	username: str


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	return password.encode("utf-8")[:72].decode("utf-8", errors="ignore")


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def password_problem(password: str) -> Optional[str]:
	if len(password) < 8:
		return "Password must be at least 8 characters"
	if not (
		re.search(r"[A-Z]", password)
		and re.search(r"[a-z]", password)
		and re.search(r"\d", password)
		and SYMBOL_RE.search(password)
	):
		return "Password must include uppercase, lowercase, number, and symbol"
	return None


def valid_email(email: str) -> bool:
	return bool(EMAIL_RE.match(email))


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
	row = (
		db.query(User)
		.filter(User.email == (email or "").strip().lower(), User.is_deleted.is_(False))
		.first()
	)
	if row and verify_password(password, row.password_hash):
		return row
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=30)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	to_encode.update({"exp": _resolve_expiry(expires_delta)})
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def issue_session_token(db: Session, user: User) -> str:
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.id, "jti": session_id})
	db.add(AuthSession(session_id=session_id, user_id=user.id))
	user.last_login = datetime.utcnow()
	db.commit()
	return access_token


def user_payload(user: User) -> dict:
	return {"id": user.id, "email": user.email, "username": user.username}


def _decode(token: str) -> tuple[str, str]:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
	except JWTError:
		raise credentials_exception
	user_id: str | None = payload.get("sub")
	jti: str | None = payload.get("jti")
	if user_id is None or jti is None:
		raise credentials_exception
	return user_id, jti


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> CurrentUser:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	user_id, jti = _decode(token)
	# The session row must still exist and not be revoked (logout)
	row = db.get(AuthSession, jti)
	if not row or row.revoked or row.user_id != user_id:
		raise credentials_exception
	user = db.get(User, user_id)
	if user is None or user.is_deleted:
		raise credentials_exception
	row.last_activity_at = datetime.utcnow()
	db.commit()
	return CurrentUser(id=user.id, email=user.email, username=user.username)


@router.post("/token", response_model=Token)
async def login_form(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	return Token(access_token=issue_session_token(db, user))


class LoginRequest(BaseModel):
	email: str
	password: str


@router.post("/login")
async def login(req: LoginRequest, db: Session = Depends(get_db)):
	user = authenticate_user(db, req.email, req.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	token = issue_session_token(db, user)
	return {"success": True, "message": "Login successful", "data": {"token": token, "user": user_payload(user)}}


@router.post("/logout")
async def logout(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)):
	_, jti = _decode(token)
	row = db.get(AuthSession, jti)
	if row and not row.revoked:
		row.revoked = True
		db.commit()
	return {"success": True, "message": "Logged out"}


@router.get("/me", response_model=CurrentUser)
async def me(user: CurrentUser = Depends(get_current_user)):
	return user


class RegisterRequest(BaseModel):
	email: str
	username: str
	password: str


@router.post("/register", status_code=201)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	email = (req.email or "").strip().lower()
	username = (req.username or "").strip()
	password = req.password or ""
	if not email or not username or not password:
		raise HTTPException(status_code=400, detail="email, username and password are required")
	if not valid_email(email):
		raise HTTPException(status_code=400, detail="Please enter a valid email address")
	if len(username) < 3 or len(username) > 128:
		raise HTTPException(status_code=400, detail="Username must be 3-128 characters")
	problem = password_problem(password)
	if problem:
		raise HTTPException(status_code=400, detail=problem)
	if db.query(User).filter(User.email == email).first():
		raise HTTPException(status_code=409, detail="Email is already registered")
	user = User(email=email, username=username, password_hash=hash_password(password))
	db.add(user)
	db.commit()
	logger.info("Registered user %s", user.id)
	token = issue_session_token(db, user)
	return {"success": True, "message": "Registration successful", "data": {"token": token, "user": user_payload(user)}}
