from __future__ import annotations
import json
import re
from typing import Any, Dict, List

_FENCE_OPEN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_SMART_DOUBLE = re.compile("[“”„‟]")
_SMART_SINGLE = re.compile("[‘’‚‛]")


class LLMJSONError(ValueError):
	pass


def strip_code_fences(text: str) -> str:
	text = _FENCE_OPEN.sub("", text.strip())
	return _FENCE_CLOSE.sub("", text)


def _repair(candidate: str) -> str:
	candidate = _SMART_DOUBLE.sub('"', candidate)
	candidate = _SMART_SINGLE.sub("'", candidate)
	return _TRAILING_COMMA.sub(r"\1", candidate)


def _slice(text: str, opener: str, closer: str) -> str | None:
	first = text.find(opener)
	last = text.rfind(closer)
	if first == -1 or last == -1 or last < first:
		return None
	return text[first : last + 1]


def extract_json_array(text: str) -> List[Any]:
	"""Parse a JSON array out of model output, repairing common damage.

	Models wrap output in code fences, add prose around it, use typographic
	quotes or leave trailing commas. A top-level object holding a
	``questions`` array is unwrapped.
	"""
	try:
		data = json.loads(text)
	except (TypeError, ValueError):
		cleaned = strip_code_fences(text or "")
		candidate = _slice(cleaned, "[", "]")
		if candidate is None:
			raise LLMJSONError("AI response does not contain a JSON array")
		try:
			data = json.loads(_repair(candidate))
		except ValueError as e:
			raise LLMJSONError(f"JSON parsing failed: {e}") from e
	if isinstance(data, dict) and isinstance(data.get("questions"), list):
		data = data["questions"]
	if not isinstance(data, list):
		raise LLMJSONError(f"Generated response is not an array. Got: {type(data).__name__}")
	return data


def extract_json_object(text: str) -> Dict[str, Any]:
	try:
		data = json.loads(text)
	except (TypeError, ValueError):
		cleaned = strip_code_fences(text or "")
		candidate = _slice(cleaned, "{", "}")
		if candidate is None:
			raise LLMJSONError("AI response does not contain a JSON object")
		try:
			data = json.loads(_repair(candidate))
		except ValueError as e:
			raise LLMJSONError(f"JSON parsing failed: {e}") from e
	if not isinstance(data, dict):
		raise LLMJSONError(f"Expected a JSON object. Got: {type(data).__name__}")
	return data
