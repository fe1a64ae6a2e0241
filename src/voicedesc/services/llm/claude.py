"""Claude vision backend for chunk and image analysis."""

import base64
import logging
import os
from pathlib import PurePosixPath

import anthropic

from voicedesc.errors import ExternalServiceError
from voicedesc.models.media import AnalysisResponse
from voicedesc.services.interfaces import IMediaStorage

logger = logging.getLogger(__name__)

_MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


class ClaudeVisionBackend:
    """Token-metered analysis backend using the Anthropic messages API.

    Reads the referenced image from storage and sends it as a base64 image
    block alongside the prompt. A missing API key marks the backend
    unavailable rather than failing at construction.
    """

    def __init__(
        self,
        storage: IMediaStorage,
        api_key: str | None = None,
        max_tokens: int = 1024,
    ) -> None:
        self.storage = storage
        self.max_tokens = max_tokens
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if self._api_key:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        else:
            self._client = None
            logger.warning("ClaudeVisionBackend: No API key found, backend unavailable")

    @property
    def is_available(self) -> bool:
        return self._client is not None

    async def analyze(self, ref: str, prompt: str, model: str) -> AnalysisResponse:
        """Send one image and prompt to Claude.

        Raises:
            ExternalServiceError: On API failure; rate limits, connection
                problems and server errors are flagged retryable.
        """
        if self._client is None:
            raise ExternalServiceError("Claude backend is not available (no API key)", service="llm")

        media_type = _MEDIA_TYPES.get(PurePosixPath(ref).suffix.lower())
        if media_type is None:
            raise ExternalServiceError(f"Unsupported image type for {ref}", service="llm")
        data = await self.storage.get(ref)

        try:
            response = await self._client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": media_type,
                                    "data": base64.b64encode(data).decode("ascii"),
                                },
                            },
                            {"type": "text", "text": prompt},
                        ],
                    }
                ],
            )
        except (anthropic.RateLimitError, anthropic.APIConnectionError, anthropic.InternalServerError) as exc:
            raise ExternalServiceError(f"Claude API error: {exc}", service="llm", retryable=True) from exc
        except anthropic.APIError as exc:
            raise ExternalServiceError(f"Claude API error: {exc}", service="llm") from exc

        text = "".join(block.text for block in response.content if block.type == "text")
        return AnalysisResponse(
            text=text,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            model=response.model or model,
        )
