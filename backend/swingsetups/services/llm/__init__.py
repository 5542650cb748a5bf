"""
Completion Service Layer

The only place the pipeline talks to language models.
"""

from swingsetups.services.llm.client import (
    Completion,
    CompletionClient,
    LLMProvider,
    get_completion_client,
)
from swingsetups.services.llm.parsing import parse_json_content, validate_stage_output

__all__ = [
    "Completion",
    "CompletionClient",
    "LLMProvider",
    "get_completion_client",
    "parse_json_content",
    "validate_stage_output",
]
