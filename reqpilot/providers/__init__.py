"""Provider layer.

All LLM interactions go through LiteLLMProvider via the ModelProvider
interface.
"""

from reqpilot.providers.base import ModelProvider
from reqpilot.providers.litellm_provider import LiteLLMProvider, format_tools, parse_reply

__all__ = [
    "LiteLLMProvider",
    "ModelProvider",
    "format_tools",
    "parse_reply",
]
