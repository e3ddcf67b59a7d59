from __future__ import annotations
import base64
import logging
import httpx
from typing import Any, Dict, List, Optional
from .errors import OracleError, is_rate_limited
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None, timeout: Optional[float] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise OracleError("GEMINI_API_KEY is not configured")
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
		self._client = httpx.AsyncClient(timeout=timeout or settings.gemini_timeout_seconds)

	async def __aenter__(self) -> "GeminiClient":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.aclose()

	async def generate(self, prompt: str) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		return await self._post_payload(payload)

	async def generate_multimodal(self, parts: List[Dict[str, Any]], *, role: str = "user") -> str:
		payload: Dict[str, Any] = {"contents": [{"role": role, "parts": parts}]}
		return await self._post_payload(payload)

	async def generate_with_document(self, prompt: str, document: bytes, *, mime_type: str = "application/pdf") -> str:
		parts = [
			{"text": prompt},
			{"inline_data": {"mime_type": mime_type, "data": base64.b64encode(document).decode("ascii")}},
		]
		return await self.generate_multimodal(parts)

	async def _post_payload(self, payload: Dict[str, Any]) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			status = http_err.response.status_code
			if status == 404:
				raise OracleError(
					f"Model {self.model} not found. Check that the API key has access to Gemini models and the model name is correct."
				) from http_err
			raise OracleError(
				f"Gemini request failed with HTTP {status}: {http_err.response.text[:300]}",
				retry_later=is_rate_limited(http_err),
			) from http_err
		except httpx.RequestError as net_err:
			raise OracleError(f"Gemini request failed: {net_err!r}") from net_err
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as parse_err:
			logger.warning("Unexpected Gemini response shape: %s", r.text[:300])
			raise OracleError(f"Unexpected Gemini response: {r.text[:300]}") from parse_err

	async def aclose(self) -> None:
		await self._client.aclose()
