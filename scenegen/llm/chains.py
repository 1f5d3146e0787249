"""LangChain chains for the extraction stages."""

import json
import re

import structlog
from langchain_core.language_models import BaseLLM
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

from scenegen.config.prompts import (
    ROLE_EXTRACTION_SYSTEM_PROMPT,
    ROLE_EXTRACTION_USER_PROMPT,
    SCENE_EXTRACTION_SYSTEM_PROMPT,
    SCENE_EXTRACTION_USER_PROMPT,
)
from scenegen.errors import TransientGenerationError

logger = structlog.get_logger(__name__)


class LLMChainError(TransientGenerationError):
    """The LLM answered with something that is not the expected JSON."""

    pass


_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_decoder = json.JSONDecoder()


def _strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text.strip("﻿​"))


def _first_object(text: str) -> dict | None:
    """Decode the first JSON object embedded in ``text``.

    Models often write a sentence of reasoning before or after the JSON.
    """
    start = text.find("{")
    while start != -1:
        try:
            value, _ = _decoder.raw_decode(text, start)
            return value
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
    return None


def parse_json_response(response: str) -> dict:
    """Parse a JSON object from an LLM response.

    A fenced code block wins over the surrounding text; otherwise the whole
    response is parsed, then the first embedded object.

    Raises:
        LLMChainError: If no JSON object can be recovered.
    """
    if not response or not response.strip():
        raise LLMChainError("LLM returned an empty response")

    text = response.strip()
    fenced = _FENCED_BLOCK.search(text)
    if fenced and fenced.group(1).lstrip().startswith("{"):
        text = fenced.group(1)

    text = _strip_trailing_commas(text)
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        value = _first_object(text)

    if isinstance(value, dict):
        return value

    logger.warning("llm_json_unparseable", response_preview=text[:300])
    raise LLMChainError(f"LLM response is not a JSON object: {text[:150]!r}")


async def _invoke(llm: BaseLLM, system_prompt: str, user_prompt: str, variables: dict, context_name: str) -> dict:
    prompt = ChatPromptTemplate.from_messages([
        ("system", system_prompt),
        ("human", user_prompt),
    ])
    chain = prompt | llm | StrOutputParser()

    response = await chain.ainvoke(variables)

    logger.debug(
        f"{context_name}_raw_response",
        response_length=len(response) if response else 0,
        response_preview=response[:200] if response else "EMPTY",
    )
    return parse_json_response(response)


async def run_role_extraction_chain(llm: BaseLLM, text: str) -> dict:
    """Ask the LLM for the characters of a whole document.

    Returns:
        Dict with a ``roles`` list.
    """
    result = await _invoke(
        llm,
        ROLE_EXTRACTION_SYSTEM_PROMPT,
        ROLE_EXTRACTION_USER_PROMPT,
        {"text": text},
        "role_extraction",
    )
    if not isinstance(result.get("roles"), list):
        raise LLMChainError("Role extraction response has no 'roles' list")
    return result


async def run_scene_extraction_chain(llm: BaseLLM, chapter_text: str) -> dict:
    """Ask the LLM to split one chapter into ordered scenes.

    Returns:
        Dict with a ``scenes`` list.
    """
    result = await _invoke(
        llm,
        SCENE_EXTRACTION_SYSTEM_PROMPT,
        SCENE_EXTRACTION_USER_PROMPT,
        {"chapter_text": chapter_text},
        "scene_extraction",
    )
    if not isinstance(result.get("scenes"), list):
        raise LLMChainError("Scene extraction response has no 'scenes' list")
    return result
