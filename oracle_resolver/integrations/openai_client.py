from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import httpx

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class ReasoningServiceError(RuntimeError):
    """Raised when the reasoning service cannot produce a response."""


def extract_output_text(payload: Mapping[str, Any]) -> str:
    """Concatenate the ``output_text`` parts of a Responses API payload."""

    direct = payload.get("output_text")
    if isinstance(direct, str):
        return direct

    chunks: list[str] = []
    for item in payload.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for part in item.get("content") or []:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "output_text" and isinstance(part.get("text"), str):
                chunks.append(part["text"])
    return "".join(chunks)


class OpenAIResponsesClient:
    """Thin async wrapper around the OpenAI Responses endpoint with retries."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY is required for question resolution")
        self._model = model
        self._max_retries = max(max_retries, 0)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def complete(
        self,
        prompt: str,
        *,
        web_search: bool = False,
        schema: Mapping[str, Any] | None = None,
        schema_name: str = "result",
    ) -> str:
        """Send one prompt and return the model's text output."""

        payload: dict[str, Any] = {"model": self._model, "input": prompt}
        if web_search:
            payload["tools"] = [{"type": "web_search"}]
        if schema is not None:
            payload["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": dict(schema),
                    "strict": True,
                }
            }

        data = await self._post("/responses", payload)
        text = extract_output_text(data)
        logger.debug("Reasoning response (%s chars, web_search=%s)", len(text), web_search)
        return text

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        attempt = 0
        backoff = 1.0
        while True:
            try:
                response = await self._client.post(path, json=payload)
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict):
                    raise ReasoningServiceError("Reasoning service returned a non-object body")
                return data
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status == 429:
                    retry_after = exc.response.headers.get("Retry-After")
                    if retry_after:
                        try:
                            backoff = max(backoff, float(retry_after))
                        except ValueError:
                            pass
                if status in _RETRYABLE_STATUS and attempt < self._max_retries:
                    attempt += 1
                    logger.warning(
                        "Reasoning request failed (status=%s); retrying in %.1fs",
                        status,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, 60)
                    continue
                logger.error("Reasoning request failed permanently (status=%s)", status)
                raise ReasoningServiceError(f"Reasoning request failed with status {status}") from exc
            except (httpx.TransportError, ValueError) as exc:
                if attempt < self._max_retries:
                    attempt += 1
                    logger.warning(
                        "Reasoning request errored (%s); retrying in %.1fs",
                        exc.__class__.__name__,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    backoff = min(backoff * 2, 60)
                    continue
                raise ReasoningServiceError(f"Reasoning request errored: {exc}") from exc


__all__ = ["OpenAIResponsesClient", "ReasoningServiceError", "extract_output_text"]
