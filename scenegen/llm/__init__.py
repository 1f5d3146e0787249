"""LLM and media generation clients."""

from .chains import LLMChainError, parse_json_response
from .client import create_json_llm_client
from .generation import GenerationClient, ServiceGenerationClient

__all__ = [
    "GenerationClient",
    "LLMChainError",
    "ServiceGenerationClient",
    "create_json_llm_client",
    "parse_json_response",
]
