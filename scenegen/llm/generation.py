"""
Generation Client - role/scene extraction plus image and voice synthesis.

Extraction goes to the Ollama LLM through the LangChain chains; media goes to
an HTTP generation service that answers ``{"url": ...}`` for a prompt.

Every failure is reported as either:
- TransientGenerationError: timeouts, connection problems, 5xx/429 answers,
  unparseable LLM output. Retried in-call, then left to the pipeline's
  retry policy.
- PermanentGenerationError: input the service rejects (4xx), or nothing to
  generate from.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import ollama
import structlog
from langchain_core.language_models import BaseLLM
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from scenegen.config.settings import Settings, get_settings
from scenegen.errors import PermanentGenerationError, TransientGenerationError
from scenegen.models import RoleDraft, SceneDraft

from .chains import run_role_extraction_chain, run_scene_extraction_chain
from .client import create_json_llm_client

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class GenerationClient(ABC):
    """The four generation calls the pipeline stages depend on."""

    @abstractmethod
    async def extract_roles(self, text: str) -> list[RoleDraft]: ...

    @abstractmethod
    async def extract_scenes(self, chapter_text: str) -> list[SceneDraft]: ...

    @abstractmethod
    async def generate_image(self, scene_text: str) -> str:
        """Returns the URL of the generated image."""

    @abstractmethod
    async def generate_voice(self, scene_text: str) -> str:
        """Returns the URL of the generated narration."""

    async def close(self) -> None:
        pass


def _is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in (408, 429)


class ServiceGenerationClient(GenerationClient):
    """GenerationClient backed by Ollama and an HTTP media service."""

    def __init__(
        self,
        settings: Settings | None = None,
        llm: Optional[BaseLLM] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self._llm = llm or create_json_llm_client(self.settings)

        headers = {}
        if self.settings.media_api_key:
            headers["Authorization"] = f"Bearer {self.settings.media_api_key}"
        self._http = http_client or httpx.AsyncClient(
            base_url=self.settings.media_base_url,
            headers=headers,
            timeout=self.settings.media_request_timeout,
        )

    async def _with_retries(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        # Wrap in tenacity here so the retry count comes from settings
        @retry(
            wait=wait_exponential(multiplier=self.settings.generation_retry_wait, max=30),
            stop=stop_after_attempt(max(1, self.settings.generation_max_retries)),
            retry=retry_if_exception_type(TransientGenerationError),
            reraise=True,
        )
        async def _attempt() -> T:
            try:
                return await fn()
            except TransientGenerationError as e:
                logger.warning("generation_call_failed", operation=operation, error=str(e))
                raise

        return await _attempt()

    # =========================================================================
    # Extraction (LLM)
    # =========================================================================

    async def _run_chain(self, chain, text: str) -> dict:
        try:
            return await chain(self._llm, text)
        except ollama.ResponseError as e:
            if _is_transient_status(e.status_code):
                raise TransientGenerationError(f"LLM error {e.status_code}: {e.error}") from e
            raise PermanentGenerationError(f"LLM rejected request: {e.error}") from e
        except (httpx.TimeoutException, httpx.TransportError, ConnectionError) as e:
            raise TransientGenerationError(f"LLM unreachable: {e}") from e

    async def extract_roles(self, text: str) -> list[RoleDraft]:
        if not text.strip():
            raise PermanentGenerationError("No text to extract roles from")

        result = await self._with_retries(
            "extract_roles", lambda: self._run_chain(run_role_extraction_chain, text)
        )

        roles = []
        seen = set()
        for item in result["roles"]:
            try:
                draft = RoleDraft.model_validate(item)
            except ValidationError as e:
                logger.warning("invalid_role_skipped", item=str(item)[:200], error=str(e))
                continue
            key = draft.name.casefold()
            if key in seen:
                continue
            seen.add(key)
            roles.append(draft)

        logger.info("roles_extracted", count=len(roles))
        return roles

    async def extract_scenes(self, chapter_text: str) -> list[SceneDraft]:
        if not chapter_text.strip():
            return []

        result = await self._with_retries(
            "extract_scenes",
            lambda: self._run_chain(run_scene_extraction_chain, chapter_text),
        )

        scenes = []
        for item in result["scenes"]:
            if isinstance(item, str):
                item = {"content": item}
            try:
                scenes.append(SceneDraft.model_validate(item))
            except ValidationError as e:
                logger.warning("invalid_scene_skipped", item=str(item)[:200], error=str(e))

        logger.info("scenes_extracted", count=len(scenes))
        return scenes

    # =========================================================================
    # Media (HTTP service)
    # =========================================================================

    async def _post_for_url(self, path: str, payload: dict) -> str:
        try:
            response = await self._http.post(path, json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransientGenerationError(f"{path} unreachable: {e}") from e

        if response.status_code >= 400:
            message = f"{path} returned {response.status_code}: {response.text[:200]}"
            if _is_transient_status(response.status_code):
                raise TransientGenerationError(message)
            raise PermanentGenerationError(message)

        try:
            data = response.json()
        except ValueError as e:
            raise TransientGenerationError(f"{path} returned invalid JSON") from e
        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise TransientGenerationError(f"{path} returned no url")
        return url

    async def generate_image(self, scene_text: str) -> str:
        if not scene_text.strip():
            raise PermanentGenerationError("No scene text to illustrate")
        payload = {"prompt": scene_text, "style": self.settings.media_image_style}
        return await self._with_retries(
            "generate_image", lambda: self._post_for_url("/images", payload)
        )

    async def generate_voice(self, scene_text: str) -> str:
        if not scene_text.strip():
            raise PermanentGenerationError("No scene text to narrate")
        payload = {"text": scene_text, "voice": self.settings.media_voice}
        return await self._with_retries(
            "generate_voice", lambda: self._post_for_url("/voices", payload)
        )

    async def close(self) -> None:
        await self._http.aclose()
