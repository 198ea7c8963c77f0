import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

import requests

from adaptive_rag.config import settings
from adaptive_rag.core.exceptions import OracleError
from adaptive_rag.core.interfaces import ILLMService

logger = logging.getLogger(settings.LOGGER_NAME)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Decode the first JSON object in an LLM reply.
    Tolerates markdown code fences and prose around the object.
    Raises OracleError if no object can be decoded.
    """
    if not text or not text.strip():
        raise OracleError("Empty response from LLM")

    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise OracleError("LLM response contained no JSON object")
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except ValueError as e:
            raise OracleError(f"LLM response was not valid JSON: {e}")

    if not isinstance(parsed, dict):
        raise OracleError("LLM response JSON was not an object")
    return parsed


class LLMService(ILLMService):
    """A service to interact with a local LLM API (e.g., Ollama)."""

    def __init__(
        self,
        base_url: str = settings.LLM_BASE_URL,
        model: str = settings.LLM_MODEL_NAME,
        timeout: int = settings.REQUEST_TIMEOUT
    ):
        """
        Initializes the LLMService.

        Args:
            base_url: The base URL of the LLM API.
            model: The name of the model to use.
            timeout: The request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def _generate(
        self, system_prompt: str, user_prompt: str, temperature: float, fmt: Optional[str]
    ) -> str:
        """Blocking call to /api/generate. Raises OracleError on any failure."""
        if not user_prompt or not user_prompt.strip():
            raise OracleError("Empty prompt provided")

        payload: Dict[str, Any] = {
            "model": self.model,
            "system": system_prompt,
            "prompt": user_prompt,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if fmt:
            payload["format"] = fmt

        try:
            logger.debug(f"[LLM] Sending prompt to model '{self.model}'...")
            response = requests.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.Timeout:
            logger.error(f"[LLM] Request timed out after {self.timeout} seconds.")
            raise OracleError("LLM request timed out")
        except requests.exceptions.ConnectionError:
            logger.error(f"[LLM] Cannot connect to LLM at {self.base_url}. Is the service running?")
            raise OracleError("Cannot connect to LLM service")
        except requests.exceptions.HTTPError as e:
            logger.error(f"[LLM] Service returned an error: {e.response.status_code} {e.response.text}")
            raise OracleError(f"LLM error: {e.response.status_code}")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"[LLM] Unexpected transport error: {e}")
            raise OracleError(str(e))

        answer = result.get("response") if isinstance(result, dict) else None
        if not answer or not str(answer).strip():
            logger.error("[LLM] Response was empty or malformed.")
            raise OracleError("Empty response from LLM")
        return str(answer).strip()

    async def complete(
        self, system_prompt: str, user_prompt: str, temperature: float = 0.2
    ) -> str:
        return await asyncio.to_thread(
            self._generate, system_prompt, user_prompt, temperature, None
        )

    async def complete_json(
        self, system_prompt: str, user_prompt: str, temperature: float = 0.2
    ) -> dict:
        raw = await asyncio.to_thread(
            self._generate, system_prompt, user_prompt, temperature, "json"
        )
        return extract_json_object(raw)
