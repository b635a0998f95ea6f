"""
GitGen

Resilient client for OpenAI-compatible chat-completion endpoints, with
automatic detection and self-healing of each provider's request dialect.
"""

__version__ = "1.0.0"

# Wire parameter names shared by the classifier, prober and request builder
MAX_TOKENS_PARAMETER = "max_tokens"
MAX_COMPLETION_TOKENS_PARAMETER = "max_completion_tokens"
TEMPERATURE_PARAMETER = "temperature"

TOKEN_PARAMETERS = (MAX_COMPLETION_TOKENS_PARAMETER, MAX_TOKENS_PARAMETER)

DEFAULT_TEMPERATURE = 0.2
REASONING_MODEL_TEMPERATURE = 1.0

DEFAULT_MAX_OUTPUT_TOKENS = 5000
