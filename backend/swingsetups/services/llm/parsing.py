"""
Stage output parsing.

Completion output must be a JSON object. One local repair is attempted
(strip code fences and any prose around the outermost object); anything that
still fails to parse or validate raises SchemaViolationError.
"""

import json
import logging
import re
from typing import Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from swingsetups.services.base import SchemaViolationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)


def _repair(text: str) -> str:
    """Strip incidental wrapping around a JSON object."""
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text.strip()
    return text[start : end + 1]


def parse_json_content(text: str, stage: str = "completion") -> dict:
    """Parse a completion into a dict, repairing once on failure."""
    if not text or not text.strip():
        raise SchemaViolationError("parser", "Empty completion", raw=text or "", stage=stage)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        repaired = _repair(text)
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as e:
            logger.warning(f"[{stage}] Unparsable completion after repair: {e}")
            raise SchemaViolationError(
                "parser", f"Unparsable JSON: {e.msg}", raw=text, stage=stage
            ) from e
        logger.info(f"[{stage}] Completion needed repair before parsing")

    if not isinstance(data, dict):
        raise SchemaViolationError(
            "parser", f"Expected JSON object, got {type(data).__name__}", raw=text, stage=stage
        )
    return data


def validate_stage_output(model: Type[ModelT], data: dict, stage: str) -> ModelT:
    """Validate parsed output against a stage draft schema."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"[{stage}] Output failed schema: {e.error_count()} errors")
        raise SchemaViolationError(
            "parser",
            f"{model.__name__} validation failed: {e.errors()[0].get('msg', 'invalid')}",
            raw=json.dumps(data)[:2000],
            stage=stage,
        ) from e
