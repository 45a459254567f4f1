from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiError(RuntimeError):
	def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
		self.status_code = status_code
		super().__init__(message)


def _api_error_message(r: httpx.Response) -> str:
	try:
		data = r.json()
	except ValueError:
		return r.text or "Unknown error"
	err = data.get("error") if isinstance(data, dict) else None
	if isinstance(err, dict) and err.get("message"):
		return str(err["message"])
	if isinstance(data, dict) and data.get("message"):
		return str(data["message"])
	return "Unknown error"


def _response_text(data: Dict[str, Any]) -> str:
	candidates = data.get("candidates") or []
	if not candidates:
		raise GeminiError("No response candidates from Gemini API")
	content = candidates[0].get("content") or {}
	parts = content.get("parts") or []
	if not parts:
		raise GeminiError("Invalid content structure from Gemini API")
	text = parts[0].get("text")
	if not text:
		raise GeminiError("Empty response from Gemini API")
	return text


class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)

	async def generate(self, prompt: str, *, generation_config: Optional[Dict[str, Any]] = None) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		if generation_config:
			payload["generationConfig"] = generation_config
		return await self._post_payload(
			payload,
			fallback_messages=[{"role": "user", "content": prompt}],
		)

	async def generate_chat(
		self,
		contents: List[Dict[str, Any]],
		*,
		generation_config: Optional[Dict[str, Any]] = None,
		safety_settings: Optional[List[Dict[str, str]]] = None,
	) -> str:
		payload: Dict[str, Any] = {"contents": contents}
		if generation_config:
			payload["generationConfig"] = generation_config
		if safety_settings:
			payload["safetySettings"] = safety_settings
		messages = [
			{
				"role": "assistant" if c.get("role") == "model" else "user",
				"content": "".join(p.get("text", "") for p in c.get("parts", [])),
			}
			for c in contents
		]
		return await self._post_payload(payload, fallback_messages=messages)

	async def _post_payload(
		self,
		payload: Dict[str, Any],
		*,
		fallback_messages: Optional[List[Dict[str, str]]],
		allow_fallback: bool = True,
	) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[Exception] = None
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			if r.is_error:
				last_error = GeminiError(
					f"Gemini API error: {r.status_code} - {_api_error_message(r)}",
					status_code=r.status_code,
				)
		except httpx.RequestError as net_err:
			last_error = GeminiError(f"Gemini request failed: {net_err}")
		if last_error is None:
			try:
				return _response_text(r.json())
			except GeminiError as err:
				last_error = err
			except (ValueError, AttributeError, TypeError):
				last_error = GeminiError(f"Unexpected Gemini response: {r.text[:500]}")
		logger.warning("Gemini call to %s failed: %s", self.model, last_error)
		if not allow_fallback or not self._fallback_enabled or not fallback_messages:
			raise last_error
		return await self._fallback_generate(fallback_messages, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, messages: List[Dict[str, str]], primary_error: Optional[Exception]) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error or GeminiError("Fallback requested but OpenRouter is not configured")
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": messages,
		}
		try:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except Exception as fallback_err:
			raise GeminiError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err
