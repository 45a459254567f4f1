from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from .models import ChatMessage, UploadedFile
from .settings import settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert AI tutor named "Memora AI Tutor". Your role is to:
- Help students understand concepts clearly and thoroughly
- Answer questions about any academic subject
- Provide explanations with examples when helpful
- Create practice problems and quiz questions when requested
- Encourage critical thinking and learning
- Be patient, encouraging, and supportive
- Break down complex topics into digestible parts
- Use analogies and real-world examples to clarify concepts

Keep your responses concise but comprehensive. If a topic is complex, offer to explain further or provide examples."""

SYSTEM_ACK = (
	"I understand. I'm Memora AI Tutor, and I'm here to help you learn and understand any subject. "
	"I'll provide clear explanations, examples, and support your learning journey."
)

GROUNDING_ACK = "Got it. I'll base my answers on these documents and say so when something isn't covered by them."

APOLOGY = "I apologize, but I'm having trouble generating a response right now. Please try again in a moment."

GENERATION_CONFIG: Dict[str, Any] = {
	"temperature": 0.7,
	"maxOutputTokens": 2048,
	"topP": 0.9,
	"topK": 40,
}

SAFETY_SETTINGS: List[Dict[str, str]] = [
	{"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
	for category in (
		"HARM_CATEGORY_HARASSMENT",
		"HARM_CATEGORY_HATE_SPEECH",
		"HARM_CATEGORY_SEXUALLY_EXPLICIT",
		"HARM_CATEGORY_DANGEROUS_CONTENT",
	)
]


def session_title(first_message: str) -> str:
	title = first_message[:50].split("\n")[0]
	if not title.strip():
		return "New Chat"
	if len(first_message) > 50:
		title += "..."
	return title


def grounding_text(files: Sequence[UploadedFile], max_chars: int | None = None) -> str:
	"""Concatenate document texts under per-file headers, capped at max_chars."""
	limit = settings.tutor_context_max_chars if max_chars is None else max_chars
	parts = []
	remaining = limit
	for f in files:
		if not f.extracted_text or remaining <= 0:
			continue
		body = f.extracted_text[:remaining]
		remaining -= len(body)
		parts.append(f"### {f.original_name}\n{body}")
	return "\n\n".join(parts)


def _turn(role: str, text: str) -> Dict[str, Any]:
	return {"role": role, "parts": [{"text": text}]}


def build_contents(
	message: str,
	history: Sequence[ChatMessage],
	documents: Sequence[UploadedFile] = (),
	history_limit: int | None = None,
) -> List[Dict[str, Any]]:
	limit = settings.tutor_history_limit if history_limit is None else history_limit
	contents = [_turn("user", SYSTEM_PROMPT), _turn("model", SYSTEM_ACK)]
	context = grounding_text(documents)
	if context:
		contents.append(_turn(
			"user",
			"Use the following study documents as the primary source for your answers.\n\n" + context,
		))
		contents.append(_turn("model", GROUNDING_ACK))
	recent = list(history)[-limit:] if limit > 0 else []
	for msg in recent:
		contents.append(_turn("user" if msg.role == "user" else "model", msg.content))
	contents.append(_turn("user", message))
	return contents
