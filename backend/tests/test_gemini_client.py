import asyncio

import httpx
import pytest

from memora.gemini_client import GeminiClient, GeminiError


def reply(text):
	return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


async def _call(handler, *, fallback=None, method="generate", arg="Hello"):
	client = GeminiClient(api_key="k")
	await client.aclose()
	client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
	if fallback is not None:
		client._fallback_enabled = True
		client._openrouter_api_key = "or-key"
		client._openrouter_headers["Authorization"] = "Bearer or-key"
		client._fallback_client = httpx.AsyncClient(transport=httpx.MockTransport(fallback))
	try:
		return await getattr(client, method)(arg)
	finally:
		await client.aclose()


def test_generate_sends_prompt_and_key():
	seen = {}

	def handler(request):
		seen["key"] = request.url.params.get("key")
		seen["body"] = request.content
		return httpx.Response(200, json=reply("42"))

	assert asyncio.run(_call(handler)) == "42"
	assert seen["key"] == "k"
	assert b"Hello" in seen["body"]


def test_api_error_message_is_surfaced():
	def handler(request):
		return httpx.Response(429, json={"error": {"message": "Resource exhausted"}})

	with pytest.raises(GeminiError, match="429 - Resource exhausted") as exc:
		asyncio.run(_call(handler))
	assert exc.value.status_code == 429


def test_empty_candidates_rejected():
	def handler(request):
		return httpx.Response(200, json={"candidates": []})

	with pytest.raises(GeminiError, match="No response candidates"):
		asyncio.run(_call(handler))


def test_falls_back_to_openrouter():
	def handler(request):
		return httpx.Response(503, json={"error": {"message": "overloaded"}})

	def fallback(request):
		assert request.headers["Authorization"] == "Bearer or-key"
		return httpx.Response(200, json={"choices": [{"message": {"content": "from fallback"}}]})

	contents = [{"role": "user", "parts": [{"text": "Hi"}]}, {"role": "model", "parts": [{"text": "Hello"}]}]
	assert asyncio.run(_call(handler, fallback=fallback, method="generate_chat", arg=contents)) == "from fallback"


def test_missing_key_is_a_configuration_error(monkeypatch):
	from memora import gemini_client
	monkeypatch.setattr(gemini_client.settings, "gemini_api_key", None)
	with pytest.raises(ValueError, match="GEMINI_API_KEY"):
		GeminiClient()
