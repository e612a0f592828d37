"""Text-generation port and its Ollama-backed implementation.

Every call site renders a prompt template with its parameters, asks the
generator for a JSON object and validates the result against one pydantic
schema from ``schemas.py``.
"""

import asyncio
import json
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..config import get_settings
from ..exceptions import ExternalServiceError
from ..logging_config import LoggerMixin, get_logger
from .api_client import ApiClient

logger = get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class TextGenerationError(ExternalServiceError):
    """Raised when the text generator fails or returns unusable output."""


class TextGenerator(Protocol):
    """Structured text generation collaborator."""

    async def generate(self, prompt_template: str, params: Dict[str, Any]) -> Dict[str, Any]:
        ...


def render_prompt(prompt_template: str, params: Dict[str, Any]) -> str:
    """Fill a ``str.format`` template; dict and list params are embedded as JSON."""
    rendered = {
        key: json.dumps(value, ensure_ascii=False) if isinstance(value, (dict, list)) else value
        for key, value in params.items()
    }
    try:
        return prompt_template.format(**rendered)
    except KeyError as e:
        raise TextGenerationError(f"Prompt parameter missing: {e}") from e


class OllamaTextGenerator(LoggerMixin):
    """Generate JSON objects with a local Ollama server."""

    def __init__(self, settings=None, api_client: Optional[ApiClient] = None, model: Optional[str] = None):
        self.settings = settings or get_settings()
        self.api_client = api_client or ApiClient(self.settings)
        self.model = model or self.settings.ollama_model

    async def generate(self, prompt_template: str, params: Dict[str, Any]) -> Dict[str, Any]:
        prompt = render_prompt(prompt_template, params)
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
        }
        self.logger.debug("Requesting generation", model=self.model, prompt_chars=len(prompt))
        result = await self.api_client.post_json(
            self.settings.ollama_url,
            "/api/generate",
            payload,
            timeout=self.settings.generation_timeout,
        )
        text = result.get("response", "")
        if not isinstance(text, str) or not text.strip():
            raise TextGenerationError("Empty response returned from Ollama", service="ollama")
        return parse_json_object(text)


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse a JSON object, tolerating a fenced code block around it."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end < start:
        raise TextGenerationError("Generator response contains no JSON object")
    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise TextGenerationError(f"Generator returned malformed JSON: {e}") from e
    if not isinstance(data, dict):
        raise TextGenerationError("Generator response is not a JSON object")
    return data


async def generate_structured(
    generator: TextGenerator,
    prompt_template: str,
    params: Dict[str, Any],
    schema: Type[SchemaT],
    timeout: Optional[float] = None,
) -> SchemaT:
    """Run one generation call and validate it against ``schema``.

    Raises:
        ExternalServiceError: On timeout, transport failure or schema violation
    """
    timeout = timeout if timeout is not None else get_settings().generation_timeout
    try:
        raw = await asyncio.wait_for(generator.generate(prompt_template, params), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise TextGenerationError(f"Text generation timed out after {timeout}s", service="text_generation") from e

    if not isinstance(raw, dict):
        raise TextGenerationError("Generator returned a non-object payload", service="text_generation")

    try:
        return schema.model_validate(raw)
    except PydanticValidationError as e:
        logger.warning("Generator response failed validation", schema=schema.__name__, errors=e.error_count())
        raise TextGenerationError(
            f"Generator response does not match {schema.__name__}: {e.errors()[0]['msg']}",
            service="text_generation",
        ) from e
