"""Model and agent construction shared by all agents.

Supports:
    - Remote models by PydanticAI model string: 'google-gla:gemini-3-flash-preview'
    - Local OpenAI-compatible servers: 'openai:{model_name}@http://127.0.0.1:8080/v1'
"""

import logging
from typing import Any

from openai import AsyncOpenAI
from pydantic_ai import Agent, PromptedOutput, RunContext
from pydantic_ai.models.openai import OpenAIModel
from pydantic_ai.profiles.openai import OpenAIModelProfile
from pydantic_ai.providers.openai import OpenAIProvider

logger = logging.getLogger(__name__)


def parse_local_model(model_str: str) -> tuple[str, str] | None:
    """Parse local model string into (model_name, base_url) or None if not local."""
    if model_str.startswith("openai:") and "@" in model_str:
        rest = model_str[7:]  # Remove "openai:" prefix
        model_name, base_url = rest.split("@", 1)
        return model_name, base_url
    return None


def create_model(model_str: str):
    """PydanticAI model instance for a local server, or the string itself."""
    parsed = parse_local_model(model_str)
    if parsed:
        model_name, base_url = parsed
        logger.info("Using local model | model=%s base_url=%s", model_name, base_url)
        # Local servers don't need authentication - use placeholder
        client = AsyncOpenAI(base_url=base_url, api_key="local-model")
        # Local servers usually lack response_format support
        profile = OpenAIModelProfile(supports_json_object_output=False)
        return OpenAIModel(
            model_name=model_name,
            provider=OpenAIProvider(openai_client=client),
            profile=profile,
        )
    return model_str


def create_agent(model: str, output_type: type, prompts: dict[str, str]) -> Agent:
    """Agent with prompted structured output and a language-selected system prompt.

    The deps object passed to run() must have a `language` attribute.
    """
    agent: Agent[Any, Any] = Agent(
        create_model(model),
        # PromptedOutput works with local models that don't support tool_choice
        output_type=PromptedOutput(output_type),
        retries=3,
        defer_model_check=True,
    )

    @agent.system_prompt
    def dynamic_prompt(ctx: RunContext[Any]) -> str:
        return prompts.get(ctx.deps.language, prompts["en"])

    return agent


def log_usage(event: str, result: Any, **fields: Any) -> None:
    usage = result.usage()
    extra = " ".join(f"{k}={v}" for k, v in fields.items())
    logger.debug(
        "%s | %s requests=%d tokens=%d/%d",
        event,
        extra,
        usage.requests,
        usage.request_tokens or 0,
        usage.response_tokens or 0,
    )
