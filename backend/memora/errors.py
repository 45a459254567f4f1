"""
Domain exceptions for the Memora backend.

Routers translate client mistakes into ``HTTPException`` directly; these
classes cover failures raised from the pipeline modules, which know nothing
about HTTP. ``status_code`` is what the app-level handler answers with when
one escapes a route.
"""
from typing import List, Optional


class MemoraError(Exception):
	status_code = 500

	def __init__(self, message: str = "Internal server error") -> None:
		self.message = message
		super().__init__(message)


class ExtractionError(MemoraError):
	"""A document could not be turned into text."""
	status_code = 422


class QuizGenerationError(MemoraError):
	"""The LLM output could not be turned into a usable quiz."""
	status_code = 502


class QuizSessionError(MemoraError):
	status_code = 409


class IncompleteAnswersError(QuizSessionError):
	"""Submission attempted with unanswered questions while time remains."""
	status_code = 400

	def __init__(self, missing: List[str], message: Optional[str] = None) -> None:
		self.missing = list(missing)
		super().__init__(message or f"{len(self.missing)} question(s) have not been answered")
