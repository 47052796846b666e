from __future__ import annotations

import base64
import time
from typing import Any, Dict, List, Optional, Protocol, Union

import httpx
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncOpenAI

from ..config import RecognitionConfig
from ..domain.errors import RecognitionServiceError
from ..domain.models import CapturedImage
from ..logging import get_logger


LOG = get_logger("recognition-service")


class RecognitionService(Protocol):
    """Opaque image/text analysis capability used by the pipeline."""

    async def analyze(
        self,
        image: CapturedImage,
        instruction: str,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> Union[str, Dict[str, Any]]:
        ...

    async def analyze_with_search(self, prompt: str) -> str:
        ...


def image_data_url(image: CapturedImage) -> str:
    b64 = base64.b64encode(image.data).decode("ascii")
    return f"data:{image.mime_type};base64,{b64}"


class OpenRouterRecognitionService:
    """OpenRouter chat completions through the OpenAI SDK.

    - Extraction sends the image as a base64 data URL and, when a schema is
      given, requests strict `json_schema` output.
    - Enrichment enables OpenRouter's `web` plugin for search grounding.
    - SDK failures are logged and re-raised as RecognitionServiceError.
    """

    def __init__(self, config: RecognitionConfig, *, client: Optional[Any] = None) -> None:
        self.config = config
        self._http_client: Optional[httpx.AsyncClient] = None
        if client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10.0, read=float(config.timeout_seconds), write=30.0, pool=10.0),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            )
            client = AsyncOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                http_client=self._http_client,
                max_retries=0,
            )
        self._client = client

    async def analyze(
        self,
        image: CapturedImage,
        instruction: str,
        output_schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        approx_kib = round(len(image.data) / 1024, 1)
        LOG.debug("Preparing image analysis: %sx%s %s (~%.1f KiB)", image.width, image.height, image.mime_type, approx_kib)
        messages: List[Dict[str, Any]] = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": instruction},
                    {"type": "image_url", "image_url": {"url": image_data_url(image)}},
                ],
            }
        ]
        extra: Dict[str, Any] = {}
        if output_schema:
            extra["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "device_label", "strict": True, "schema": output_schema},
            }
        return await self._complete(messages, scope="extraction", **extra)

    async def analyze_with_search(self, prompt: str) -> str:
        messages = [{"role": "user", "content": prompt}]
        plugins = [{"id": "web", "max_results": self.config.search_results}]
        return await self._complete(messages, scope="enrichment", extra_body={"plugins": plugins})

    async def _complete(self, messages: List[Dict[str, Any]], *, scope: str, **kwargs: Any) -> str:
        t0 = time.perf_counter()
        LOG.info("Calling %s (%s) model='%s'…", self.config.base_url, scope, self.config.model_name)
        try:
            completion = await self._client.chat.completions.create(
                model=self.config.model_name,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                **kwargs,
            )
        except (APIConnectionError, APITimeoutError) as e:
            LOG.error("Network/timeout during %s call: %s", scope, e)
            raise RecognitionServiceError(f"{scope}: network error") from e
        except APIStatusError as e:
            body = getattr(getattr(e, "response", None), "text", None)
            LOG.error("%s call returned %s. Body preview: %r", scope, getattr(e, "status_code", "?"), (body[:300] if body else None))
            raise RecognitionServiceError(f"{scope}: HTTP {getattr(e, 'status_code', '?')}") from e
        except APIError as e:
            LOG.error("%s call failed: %s", scope, e)
            raise RecognitionServiceError(f"{scope}: API error") from e

        choices = getattr(completion, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        text = getattr(message, "content", None) if message is not None else None

        usage = getattr(completion, "usage", None)
        usage_dict = {k: getattr(usage, k, None) if usage else None for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
        LOG.info(
            "%s finished in %.2fs id=%s usage=%s (text=%s)",
            scope,
            time.perf_counter() - t0,
            getattr(completion, "id", None),
            usage_dict,
            "ok" if text else "none",
        )
        if not isinstance(text, str) or not text.strip():
            raise RecognitionServiceError(f"{scope}: empty response")
        return text

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
