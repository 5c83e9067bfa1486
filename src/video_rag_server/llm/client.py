from typing import AsyncIterator, Dict, Any, Optional
import json
import logging

import httpx

from ..config import settings
from ..core.errors import GenerationFailure

logger = logging.getLogger("rag.llm")


class LLMClient:
    """
    Generation capability over the OpenAI chat completions API.

    ``generate`` returns the whole answer; ``generate_stream`` yields text
    deltas parsed from the server-sent event stream.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.model = model or settings.chat_model
        self.temperature = settings.temperature if temperature is None else temperature
        self.url = f"{(base_url or settings.openai_base_url).rstrip('/')}/chat/completions"
        self.timeout = timeout or settings.llm_timeout
        self._transport = transport

    def _payload(self, prompt: str, stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "stream": stream,
        }

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def generate(self, prompt: str) -> str:
        """Return the full answer text for ``prompt``."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self.url,
                    json=self._payload(prompt, stream=False),
                    headers=self._headers(),
                )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Generation request failed (%s): %s", type(exc).__name__, exc)
            raise GenerationFailure(
                f"Answer generation failed: {type(exc).__name__}"
            ) from exc

        data = resp.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationFailure("Malformed generation response") from exc

        if content is None:
            return ""
        return content if isinstance(content, str) else json.dumps(content)

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        """
        Yield answer deltas in the order the provider sends them.

        The provider sends lines of the form ``data: {...}`` and terminates
        with ``data: [DONE]``.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST",
                    self.url,
                    json=self._payload(prompt, stream=True),
                    headers=self._headers(),
                ) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        delta = self._parse_stream_line(line)
                        if delta is _DONE:
                            break
                        if delta:
                            yield delta
        except httpx.HTTPError as exc:
            logger.error("Generation stream failed (%s): %s", type(exc).__name__, exc)
            raise GenerationFailure(
                f"Answer streaming failed: {type(exc).__name__}"
            ) from exc

    @staticmethod
    def _parse_stream_line(line: str) -> Any:
        line = line.strip()
        if not line.startswith("data:"):
            return None

        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return _DONE

        try:
            chunk = json.loads(data)
        except json.JSONDecodeError as exc:
            raise GenerationFailure("Malformed stream event from provider") from exc

        choices = chunk.get("choices") or []
        if not choices:
            return None
        content = (choices[0].get("delta") or {}).get("content")
        if content is None:
            return None
        return content if isinstance(content, str) else json.dumps(content)


_DONE = object()
