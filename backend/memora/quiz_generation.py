"""
Document-to-quiz generation.

The route layer creates a ``Quiz`` row in the ``generating`` state and hands
``run_quiz_generation`` to FastAPI's background tasks. The task combines the
source texts, prompts Gemini for a JSON array of questions, repairs and
validates the output, and flips the quiz to ``completed`` or ``failed``.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .db import SessionLocal
from .errors import QuizGenerationError
from .gemini_client import GeminiClient
from .llm_json import LLMJSONError, extract_json_array
from .models import Quiz, QuizQuestion
from .settings import settings

logger = logging.getLogger(__name__)

MULTIPLE_CHOICE = "multiple-choice"
FILL_BLANK = "fill-blank"
QUESTION_TYPES = (MULTIPLE_CHOICE, FILL_BLANK)
DIFFICULTIES = ("easy", "medium", "hard")

TEXT_SEPARATOR = "\n\n---\n\n"
TRUNCATION_NOTE = "\n\n[Text truncated due to length...]"

GENERATION_CONFIG: Dict[str, Any] = {
	"temperature": 0.3,
	"maxOutputTokens": 65536,
	"topP": 0.8,
	"topK": 40,
	"responseMimeType": "application/json",
}

_LETTER_ANSWER = re.compile(r"^\(?([A-Ha-h])[\).:]?$")


@dataclass
class QuizSettings:
	num_questions: int
	difficulty: str
	quiz_types: List[str] = field(default_factory=lambda: [MULTIPLE_CHOICE])


def combine_texts(texts: Sequence[str], max_chars: Optional[int] = None) -> str:
	limit = settings.quiz_text_max_chars if max_chars is None else max_chars
	combined = TEXT_SEPARATOR.join(t for t in texts if t)
	if len(combined) > limit:
		return combined[:limit] + TRUNCATION_NOTE
	return combined


def _type_rules(quiz_types: List[str]) -> str:
	rules = []
	if MULTIPLE_CHOICE in quiz_types:
		rules.append(
			f'- For "{MULTIPLE_CHOICE}": options is an array of 4 choices and correct_answer must match one of the options exactly'
		)
	if FILL_BLANK in quiz_types:
		rules.append(
			f'- For "{FILL_BLANK}": question_text contains a blank written as "____", options is an empty array [] '
			"and correct_answer is the short word or phrase that fills the blank"
		)
	return "\n".join(rules)


def _example(quiz_type: str) -> Dict[str, Any]:
	if quiz_type == FILL_BLANK:
		return {
			"question_text": "The capital of France is ____.",
			"question_type": FILL_BLANK,
			"options": [],
			"correct_answer": "Paris",
			"explanation": "Paris is the capital and largest city of France.",
		}
	return {
		"question_text": "What is the capital of France?",
		"question_type": MULTIPLE_CHOICE,
		"options": ["Paris", "London", "Berlin", "Madrid"],
		"correct_answer": "Paris",
		"explanation": "Paris is the capital and largest city of France.",
	}


def build_quiz_prompt(study_text: str, quiz: QuizSettings) -> str:
	types = quiz.quiz_types
	if len(types) == 1:
		type_phrase = types[0]
		type_field = f'"{types[0]}"'
	else:
		type_phrase = "mixed (" + " and ".join(types) + ")"
		type_field = "one of " + ", ".join(f'"{t}"' for t in types) + " (use a balanced mix)"
	example = json.dumps([_example(t) for t in types], indent=2)
	return (
		f"You are an expert educational quiz generator. Generate {quiz.num_questions} {quiz.difficulty} "
		f"difficulty {type_phrase} questions based on the following study materials.\n\n"
		f"STUDY MATERIALS:\n{study_text}\n\n"
		f"Generate {quiz.num_questions} questions in JSON array format. Each question must have:\n"
		"- question_text: the question\n"
		f"- question_type: {type_field}\n"
		"- options: see the rules below\n"
		"- correct_answer: the correct answer\n"
		"- explanation: brief explanation of the answer\n\n"
		f"Rules:\n{_type_rules(types)}\n\n"
		"Only use facts stated in the study materials. Return ONLY the JSON array, no markdown.\n\n"
		f"Example:\n{example}"
	)


def _clean_str(value: Any) -> str:
	if value is None or isinstance(value, (dict, list)):
		return ""
	return str(value).strip()


def resolve_choice(answer: str, options: List[str]) -> Optional[str]:
	"""Map a model's correct_answer onto one of its options.

	Accepts the option text itself, a case-insensitive match, or a letter
	label such as ``B`` or ``(c)``.
	"""
	if answer in options:
		return answer
	folded = answer.casefold()
	for option in options:
		if option.casefold() == folded:
			return option
	m = _LETTER_ANSWER.match(answer)
	if m:
		idx = ord(m.group(1).upper()) - ord("A")
		if idx < len(options):
			return options[idx]
	return None


def normalize_question(item: Any, allowed_types: Sequence[str]) -> Optional[Dict[str, Any]]:
	if not isinstance(item, dict):
		return None
	question_text = item.get("question_text")
	if not isinstance(question_text, str) or not question_text.strip():
		return None
	question_type = _clean_str(item.get("question_type"))
	if question_type not in allowed_types:
		return None
	correct = _clean_str(item.get("correct_answer"))
	if not correct:
		return None
	raw_options = item.get("options") if isinstance(item.get("options"), list) else []
	options = [_clean_str(o) for o in raw_options if _clean_str(o)]
	if question_type == MULTIPLE_CHOICE:
		if len(options) < 2:
			return None
		resolved = resolve_choice(correct, options)
		if resolved is None:
			return None
		correct = resolved
	else:
		options = []
	return {
		"question_text": question_text.strip(),
		"question_type": question_type,
		"options": options,
		"correct_answer": correct,
		"explanation": _clean_str(item.get("explanation")),
	}


def validate_questions(raw: List[Any], quiz: QuizSettings) -> List[Dict[str, Any]]:
	if not raw:
		raise QuizGenerationError("Generated questions array is empty")
	valid = []
	for item in raw:
		q = normalize_question(item, quiz.quiz_types)
		if q is None:
			logger.info("Invalid question filtered out: %s", json.dumps(item, default=str)[:300])
			continue
		valid.append(q)
	logger.info("Valid questions: %d of %d returned", len(valid), len(raw))
	if not valid:
		raise QuizGenerationError("No valid questions found in AI response")
	if len(valid) < quiz.num_questions * 0.5:
		raise QuizGenerationError(
			f"Only generated {len(valid)} valid questions out of {quiz.num_questions} requested"
		)
	return valid[: quiz.num_questions]


async def generate_questions(texts: Sequence[str], quiz: QuizSettings) -> List[Dict[str, Any]]:
	study_text = combine_texts(texts)
	logger.info(
		"Generating %d %s %s question(s) from %d chars",
		quiz.num_questions, quiz.difficulty, "/".join(quiz.quiz_types), len(study_text),
	)
	client = GeminiClient()
	try:
		raw = await client.generate(build_quiz_prompt(study_text, quiz), generation_config=GENERATION_CONFIG)
	finally:
		await client.aclose()
	try:
		items = extract_json_array(raw)
	except LLMJSONError as e:
		raise QuizGenerationError(str(e)) from e
	return validate_questions(items, quiz)


def store_questions(quiz_row: Quiz, questions: List[Dict[str, Any]]) -> None:
	quiz_row.questions = [
		QuizQuestion(
			position=i,
			question_text=q["question_text"],
			question_type=q["question_type"],
			options=json.dumps(q["options"]),
			correct_answer=q["correct_answer"],
			explanation=q["explanation"],
		)
		for i, q in enumerate(questions)
	]


async def run_quiz_generation(quiz_id: str, texts: List[str], quiz: QuizSettings) -> None:
	"""Background task body. Never raises; failures are recorded on the quiz."""
	try:
		questions = await generate_questions(texts, quiz)
		error = None
	except Exception as e:
		logger.exception("Quiz generation failed for %s", quiz_id)
		questions = []
		error = f"Failed to generate quiz with AI: {e}"
	db = SessionLocal()
	try:
		row = db.get(Quiz, quiz_id)
		if row is None:
			logger.warning("Quiz %s disappeared before generation finished", quiz_id)
			return
		if error is None:
			store_questions(row, questions)
			row.status = "completed"
			row.generation_error = None
		else:
			row.status = "failed"
			row.generation_error = error
		db.commit()
		logger.info("Quiz %s generation finished with status %s", quiz_id, row.status)
	finally:
		db.close()
