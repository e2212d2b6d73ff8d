"""Model construction shared by every pydantic-ai agent in the pipeline.

Model strings:
    - 'gpt-4o-mini': OpenAI model using OPENAI_API_KEY (and LLM_BASE_URL if set)
    - 'openai:{model_name}@http://127.0.0.1:8080/v1': local OpenAI-compatible server
    - 'provider:model' (e.g. 'anthropic:claude-...'): passed to pydantic-ai as is
"""

import logging
from typing import Any

from openai import AsyncOpenAI
from pydantic_ai import PromptedOutput
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.profiles.openai import OpenAIModelProfile
from pydantic_ai.providers.openai import OpenAIProvider

from config import Config

logger = logging.getLogger(__name__)


def parse_local_model(model_str: str) -> tuple[str, str] | None:
    """Parse local model string into (model_name, base_url) or None if not local."""
    if model_str.startswith("openai:") and "@" in model_str:
        rest = model_str[7:]  # Remove "openai:" prefix
        model_name, base_url = rest.split("@", 1)
        return model_name, base_url
    return None


def create_model(model_str: str, config: Config) -> Any:
    """Create the pydantic-ai model for a model string.

    Args:
        model_str: Model identifier string
        config: Application configuration (API key, base URL)

    Returns:
        PydanticAI model instance or model string
    """
    parsed = parse_local_model(model_str)
    if parsed:
        model_name, base_url = parsed
        logger.info("Using local model | model=%s base_url=%s", model_name, base_url)
        # Local servers don't need authentication - use placeholder
        client = AsyncOpenAI(base_url=base_url, api_key="local-model")
        profile = OpenAIModelProfile(supports_json_object_output=False)
        return OpenAIChatModel(
            model_name,
            provider=OpenAIProvider(openai_client=client),
            profile=profile,
        )
    if ":" in model_str:
        return model_str

    client = AsyncOpenAI(
        api_key=config.openai_api_key,
        base_url=config.llm_base_url or None,
    )
    return OpenAIChatModel(model_str, provider=OpenAIProvider(openai_client=client))


def structured_output(model_str: str, output_model: type) -> Any:
    """Output spec for an agent: prompted JSON for local models, tool output otherwise."""
    if parse_local_model(model_str):
        return PromptedOutput(output_model)
    return output_model
