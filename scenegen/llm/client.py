"""Ollama LLM client configuration."""

from langchain_ollama import OllamaLLM

from scenegen.config.settings import Settings, get_settings


def create_json_llm_client(settings: Settings | None = None) -> OllamaLLM:
    """Create an LLM client for JSON-returning extraction prompts.

    Args:
        settings: Optional custom settings. Uses cached settings if not provided.

    Returns:
        Configured OllamaLLM instance.
    """
    settings = settings or get_settings()

    return OllamaLLM(
        model=settings.llm_model_name,
        base_url=settings.llm_ollama_base_url,
        temperature=settings.llm_temperature,
        timeout=settings.llm_request_timeout,
        num_ctx=settings.llm_num_ctx,
        num_predict=settings.llm_num_predict,
        # JSON is pulled out of the text by chains.parse_json_response
        streaming=False,
    )
