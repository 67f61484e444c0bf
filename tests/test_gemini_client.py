"""Tests for the Gemini model factory and response-schema cleaning."""

from unittest.mock import MagicMock, patch

from callcoach.domain.schemas import AnalysisResult
from callcoach.infra.gemini_client import clean_schema, get_model


def _fake_settings():
    """Return a mock Settings object with a fake API key."""
    s = MagicMock()
    s.gemini_api_key = "fake-key-for-testing"
    s.scoring_model = "gemini-default"
    return s


def _walk(node):
    if isinstance(node, dict):
        yield node
        for value in node.values():
            yield from _walk(value)
    elif isinstance(node, list):
        for item in node:
            yield from _walk(item)


class TestCleanSchema:
    def test_analysis_result_schema_has_no_refs_or_unsupported_keys(self):
        cleaned = clean_schema(AnalysisResult.model_json_schema())

        for node in _walk(cleaned):
            assert "$ref" not in node
            assert "$defs" not in node
            assert "anyOf" not in node
            assert "title" not in node
            assert "default" not in node

    def test_optional_fields_become_nullable(self):
        cleaned = clean_schema(AnalysisResult.model_json_schema())

        outcome = cleaned["properties"]["outcome"]
        assert outcome["type"] == "object"
        assert outcome["nullable"] is True
        assert outcome["properties"]["result"] == {"type": "string", "nullable": True}

    def test_input_is_not_mutated(self):
        schema = AnalysisResult.model_json_schema()
        clean_schema(schema)
        assert "$defs" in schema

    def test_every_object_node_declares_properties(self):
        cleaned = clean_schema(AnalysisResult.model_json_schema())

        for node in _walk(cleaned):
            if node.get("type") == "object":
                assert node.get("properties"), node

    def test_skill_scores_is_a_list_of_named_scores(self):
        cleaned = clean_schema(AnalysisResult.model_json_schema())

        skills = cleaned["properties"]["skill_scores"]
        assert skills["type"] == "array"
        assert set(skills["items"]["properties"]) == {"skill", "score"}


class TestGetModel:
    @patch("callcoach.infra.gemini_client.get_settings", return_value=_fake_settings())
    @patch("callcoach.infra.gemini_client.genai")
    def test_json_mode_with_schema(self, mock_genai, _mock_settings):
        get_model(json_mode=True, response_schema={"type": "object", "title": "X"})

        call_kwargs = mock_genai.GenerativeModel.call_args
        gen_config = call_kwargs.kwargs["generation_config"]
        assert gen_config["response_mime_type"] == "application/json"
        assert gen_config["response_schema"] == {"type": "object"}
        assert call_kwargs.kwargs["model_name"] == "gemini-default"
        mock_genai.configure.assert_called_once_with(api_key="fake-key-for-testing")

    @patch("callcoach.infra.gemini_client.get_settings", return_value=_fake_settings())
    @patch("callcoach.infra.gemini_client.genai")
    def test_no_json_mode(self, mock_genai, _mock_settings):
        get_model(model_name="gemini-other", json_mode=False, response_schema={"type": "object"})

        call_kwargs = mock_genai.GenerativeModel.call_args
        gen_config = call_kwargs.kwargs["generation_config"]
        assert "response_mime_type" not in gen_config
        assert "response_schema" not in gen_config
        assert call_kwargs.kwargs["model_name"] == "gemini-other"
