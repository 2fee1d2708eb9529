from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings

logger = logging.getLogger(__name__)


class LLMClient:
	"""Chat-completions client for an OpenAI-compatible endpoint."""

	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		# Some public endpoints accept any key; keep the header well-formed either way
		self.api_key = api_key or settings.llm_api_key or "unused"
		self.model = model or settings.llm_model
		self.base_url = (base_url or settings.llm_base_url).rstrip("/") + "/chat/completions"
		timeout = settings.llm_timeout_seconds
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
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
			self._fallback_client = httpx.AsyncClient(timeout=timeout, transport=transport)

	async def complete(self, prompt: str, *, allow_fallback: bool = True) -> str:
		messages = [{"role": "user", "content": prompt}]
		return await self.chat(messages, allow_fallback=allow_fallback)

	async def chat(self, messages: List[Dict[str, str]], *, allow_fallback: bool = True) -> str:
		payload: Dict[str, Any] = {"model": self.model, "messages": messages}
		headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
		last_error: Optional[Exception] = None
		try:
			r = await self._client.post(self.base_url, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			last_error = http_err
		except httpx.RequestError as net_err:
			last_error = net_err
		if last_error is None:
			try:
				data = r.json()
				return data["choices"][0]["message"]["content"] or ""
			except Exception:
				last_error = RuntimeError(f"Unexpected completion response: {r.text}")
		logger.warning("Primary completion call failed: %s", last_error)
		if not allow_fallback or not self._fallback_enabled:
			raise last_error
		return await self._fallback_chat(messages, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_chat(self, messages: List[Dict[str, str]], primary_error: Optional[Exception]) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error or RuntimeError("Fallback requested but OpenRouter is not configured")
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
			return data["choices"][0]["message"]["content"] or ""
		except Exception as fallback_err:
			if primary_error is not None:
				raise RuntimeError(
					f"Primary completion call failed ({primary_error}); fallback via OpenRouter also failed"
				) from fallback_err
			raise fallback_err


def build_generation_prompt(topic: str, instruction: str, word_limit: Optional[int] = None) -> str:
	words = f"{word_limit}" if word_limit else "approx 500"
	return (
		"You are an expert academic assistant acting as a student.\n"
		f'Assignment Topic: "{topic}"\n'
		f"Word Limit Request: {words} words.\n"
		f"User Instruction: {instruction}\n\n"
		"Please generate a comprehensive, well-structured academic response suitable for a college assignment.\n"
		"Include standardized headings and paragraphs.\n"
		'Do not include "Here is the assignment" chatter. Just return the content.'
	)


def build_chat_prompt(topic: str, message: str) -> str:
	return (
		f'Context: Writing an assignment on "{topic}".\n'
		f"User: {message}\n\n"
		"Provide a helpful, concise academic assistance response."
	)
