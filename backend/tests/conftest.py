"""
Shared fixtures: an in-memory database rebuilt for every test, a scratch
upload directory and a scripted stand-in for the Gemini client so nothing
leaves the machine.
"""
import json
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="memora-uploads-")
os.environ["CLEANUP_INTERVAL_SECONDS"] = "0"
os.environ["GEMINI_API_KEY"] = "test-key"
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["JWT_SECRET_KEY"] = "test-secret"

import pytest
from fastapi.testclient import TestClient

from memora import quiz_generation
from memora.db import Base, SessionLocal, engine
from memora.main import app
from memora.models import Quiz, QuizQuestion, User, new_id
from memora.routers import progress as progress_router
from memora.routers import tutor as tutor_router
from memora.settings import settings

PASSWORD = "Str0ng!Pass"


class FakeGeminiClient:
	"""Replays queued replies; an Exception in the queue is raised instead."""

	replies = []
	prompts = []
	chats = []

	def __init__(self, *args, **kwargs):
		pass

	@classmethod
	def reset(cls):
		cls.replies = []
		cls.prompts = []
		cls.chats = []

	@classmethod
	def queue(cls, *replies):
		cls.replies.extend(replies)

	def _next(self):
		if not self.replies:
			raise RuntimeError("no fake reply queued")
		reply = self.replies.pop(0)
		if isinstance(reply, Exception):
			raise reply
		return reply

	async def generate(self, prompt, *, generation_config=None):
		self.prompts.append(prompt)
		return self._next()

	async def generate_chat(self, contents, *, generation_config=None, safety_settings=None):
		self.chats.append(contents)
		return self._next()

	async def aclose(self):
		pass


@pytest.fixture(autouse=True)
def fresh_db():
	Base.metadata.drop_all(bind=engine)
	Base.metadata.create_all(bind=engine)
	yield


@pytest.fixture(autouse=True)
def fake_gemini(monkeypatch):
	FakeGeminiClient.reset()
	monkeypatch.setattr(quiz_generation, "GeminiClient", FakeGeminiClient)
	monkeypatch.setattr(tutor_router, "GeminiClient", FakeGeminiClient)
	monkeypatch.setattr(progress_router, "GeminiClient", FakeGeminiClient)
	return FakeGeminiClient


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
	path = tmp_path / "uploads"
	monkeypatch.setattr(settings, "upload_dir", str(path))
	return path


@pytest.fixture
def db():
	session = SessionLocal()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def client():
	with TestClient(app) as c:
		yield c


@pytest.fixture
def signup(client):
	"""Register a user and return bearer headers for them."""

	def _signup(email="ada@example.com", username="ada", password=PASSWORD):
		r = client.post("/api/auth/register", json={"email": email, "username": username, "password": password})
		assert r.status_code == 201, r.text
		token = r.json()["data"]["token"]
		return {"Authorization": f"Bearer {token}"}

	return _signup


@pytest.fixture
def auth_headers(signup):
	return signup()


@pytest.fixture
def make_quiz(db):
	"""Build a completed quiz (and its owner) directly in the database."""

	def _make(time_limit=None, questions=None, user_id=None, subject=None, title="Cells"):
		if user_id is None:
			user = User(email=f"{new_id()}@example.com", username="student", password_hash="x")
			db.add(user)
			db.flush()
			user_id = user.id
		quiz = Quiz(
			user_id=user_id,
			title=title,
			subject=subject,
			quiz_type=json.dumps(["multiple-choice", "fill-blank"]),
			difficulty="medium",
			time_limit=time_limit,
			num_questions=2,
			status="completed",
		)
		specs = questions or [
			("What powers the cell?", "multiple-choice", ["Mitochondria", "Nucleus", "Ribosome", "Golgi"], "Mitochondria"),
			("DNA lives in the ____.", "fill-blank", [], "nucleus"),
		]
		quiz.questions = [
			QuizQuestion(
				position=i,
				question_text=text,
				question_type=qtype,
				options=json.dumps(options),
				correct_answer=answer,
				explanation="",
			)
			for i, (text, qtype, options, answer) in enumerate(specs)
		]
		db.add(quiz)
		db.commit()
		return quiz

	return _make