"""Tests for completion output parsing and stage draft validation."""

import pytest

from swingsetups.schemas.stages import FinalizeDraft, PreflightDraft, SkeletonDraft
from swingsetups.schemas.strategy import StrategyType
from swingsetups.services.base import SchemaViolationError
from swingsetups.services.llm.parsing import parse_json_content, validate_stage_output


class TestParseJsonContent:
    """One local repair, then SchemaViolationError."""

    def test_plain_json(self):
        assert parse_json_content('{"type": "BUY"}') == {"type": "BUY"}

    def test_code_fence_is_repaired(self):
        text = 'Here you go:\n```json\n{"type": "SELL", "entry": 10}\n```\nGood luck!'
        assert parse_json_content(text, stage="skeleton") == {"type": "SELL", "entry": 10}

    def test_surrounding_prose_is_repaired(self):
        assert parse_json_content('Result: {"notes": ["ok"]} -- end') == {"notes": ["ok"]}

    def test_unrepairable_raises(self):
        with pytest.raises(SchemaViolationError) as exc_info:
            parse_json_content("{type: BUY,,}", stage="skeleton")
        assert exc_info.value.stage == "skeleton"
        assert exc_info.value.raw == "{type: BUY,,}"

    def test_empty_raises(self):
        with pytest.raises(SchemaViolationError):
            parse_json_content("   ", stage="finalize")

    def test_non_object_raises(self):
        with pytest.raises(SchemaViolationError):
            parse_json_content("[1, 2, 3]")


class TestValidateStageOutput:
    def test_valid_skeleton(self):
        draft = validate_stage_output(SkeletonDraft, {"type": "buy", "entry": 100}, "skeleton")
        assert draft.type == StrategyType.BUY

    def test_unknown_type_is_violation(self):
        with pytest.raises(SchemaViolationError) as exc_info:
            validate_stage_output(SkeletonDraft, {"type": "STRADDLE"}, "skeleton")
        assert exc_info.value.error_code == "schema_violation"

    def test_missing_type_is_violation(self):
        with pytest.raises(SchemaViolationError):
            validate_stage_output(SkeletonDraft, {"entry": 100}, "skeleton")

    def test_preflight_notes_coerced(self):
        draft = validate_stage_output(PreflightDraft, {"notes": "single note"}, "preflight")
        assert draft.notes == ["single note"]

    def test_finalize_draft_defaults(self):
        draft = validate_stage_output(FinalizeDraft, {}, "finalize")
        assert draft.triggers == []
        assert draft.reasoning == []

    def test_finalize_bad_trigger_shape_is_violation(self):
        with pytest.raises(SchemaViolationError):
            validate_stage_output(FinalizeDraft, {"triggers": [{"left": {"ref": "close"}}]}, "finalize")
