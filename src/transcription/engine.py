"""
Voice Notes - Transcription Engine

Speech-to-text through the hosted DashScope qwen-audio-asr model.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com"
ASR_PATH = "/api/v1/services/aigc/multimodal-generation/generation"
TEXT_GENERATION_PATH = "/api/v1/services/aigc/text-generation/generation"

MIME_TYPES = {
    "webm": "audio/webm",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "m4a": "audio/mp4",
}


@dataclass
class TranscriptionResult:
    """Outcome of a transcription call."""

    success: bool
    text: str = ""
    error: Optional[str] = None


def _extract_text(content: Any) -> str:
    if isinstance(content, list):
        return "".join(part.get("text", "") for part in content if isinstance(part, dict))
    if isinstance(content, str):
        return content
    return ""


class DashScopeTranscriber:
    """Speech-to-text using the DashScope multimodal generation API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "qwen-audio-asr",
        timeout: float = 25.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the transcriber.

        Args:
            api_key: DashScope API key.
            base_url: API host.
            model: ASR model name.
            timeout: Request timeout in seconds.
            client: Optional preconfigured httpx client.
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def transcribe(self, audio_base64: str, audio_format: str = "mp3") -> TranscriptionResult:
        """
        Transcribe base64-encoded audio.

        Args:
            audio_base64: Audio bytes, base64-encoded.
            audio_format: Container format (webm, mp3, wav, ogg, m4a).

        Returns:
            TranscriptionResult. Provider failures are reported with
            success=False rather than raised.
        """
        mime_type = MIME_TYPES.get(audio_format, "audio/mpeg")
        body = {
            "model": self.model,
            "input": {
                "messages": [
                    {
                        "role": "user",
                        "content": [{"audio": f"data:{mime_type};base64,{audio_base64}"}],
                    }
                ]
            },
        }

        logger.info(f"Transcribing {len(audio_base64)} base64 chars, format={audio_format}")

        try:
            response = self._get_client().post(
                ASR_PATH,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            logger.error("Transcription request timed out")
            return TranscriptionResult(success=False, error="Request timeout")
        except httpx.HTTPError as e:
            logger.error(f"Transcription request failed: {e}")
            return TranscriptionResult(success=False, error=str(e))

        logger.debug(f"ASR response: {response.text[:500]}")

        try:
            result = response.json()
        except json.JSONDecodeError as e:
            return TranscriptionResult(success=False, error=f"Parse error: {e}")

        if not isinstance(result, dict):
            return TranscriptionResult(success=False, error="Unknown response format")

        output = result.get("output") or {}
        choices = output.get("choices") if isinstance(output, dict) else None
        if choices:
            message = choices[0].get("message") or {}
            return TranscriptionResult(
                success=True,
                text=_extract_text(message.get("content")).strip(),
            )

        if result.get("code") or result.get("message"):
            return TranscriptionResult(
                success=False,
                error=result.get("message") or result.get("code"),
            )

        return TranscriptionResult(success=False, error="Unknown response format")

    def check_api_key(self) -> dict[str, Any]:
        """
        Make a minimal text generation call to check the API key.

        Returns:
            Dict with "status" of "ok", "error" or "unknown".
        """
        body = {
            "model": "qwen-turbo",
            "input": {"messages": [{"role": "user", "content": "hi"}]},
        }

        try:
            response = self._get_client().post(
                TEXT_GENERATION_PATH,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
            result = response.json()
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            return {"status": "error", "message": str(e)}

        if not isinstance(result, dict):
            return {"status": "unknown"}
        if result.get("output"):
            return {"status": "ok", "message": "API Key is valid"}
        if result.get("code"):
            return {"status": "error", "code": result.get("code"), "message": result.get("message")}
        return {"status": "unknown"}


# Simple test
if __name__ == "__main__":
    import base64
    import os
    import sys

    if len(sys.argv) < 2:
        print("Usage: python engine.py <audio_file>")
        sys.exit(1)

    path = sys.argv[1]
    with open(path, "rb") as f:
        encoded = base64.b64encode(f.read()).decode("ascii")

    transcriber = DashScopeTranscriber(api_key=os.environ["DASHSCOPE_API_KEY"])
    fmt = path.rsplit(".", 1)[-1].lower()

    print(f"Transcribing: {path}")
    result = transcriber.transcribe(encoded, fmt)

    print("\n--- Transcription ---")
    print(result.text if result.success else f"Error: {result.error}")
