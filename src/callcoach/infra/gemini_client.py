"""Gemini model factory for scoring agents."""

from copy import deepcopy

import google.generativeai as genai

from callcoach.app.config import get_settings


# JSON Schema keywords Pydantic emits that the Gemini response_schema rejects
_REJECTED_KEYWORDS = frozenset({
    "$defs", "definitions", "title", "default", "examples", "additionalProperties",
    "minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum",
    "minLength", "maxLength", "pattern", "minItems", "maxItems", "uniqueItems",
})


def _collapse_optional(node: dict) -> dict | None:
    """``anyOf: [X, {"type": "null"}]`` becomes X with ``nullable: true``."""
    options = node.get("anyOf")
    if not isinstance(options, list):
        return None
    concrete = [opt for opt in options if opt.get("type") != "null"]
    if len(concrete) != 1 or len(concrete) == len(options):
        return None
    collapsed = {k: v for k, v in node.items() if k != "anyOf"}
    collapsed.update(concrete[0])
    collapsed["nullable"] = True
    return collapsed


def clean_schema(schema: dict) -> dict:
    """Rewrite a Pydantic JSON Schema into the subset Gemini accepts.

    References into ``$defs`` are inlined (sibling keys such as
    ``nullable`` survive the inlining), optionals are collapsed and
    rejected keywords dropped. The input is not mutated.
    """
    schema = deepcopy(schema)
    definitions = schema.pop("$defs", None) or schema.pop("definitions", None) or {}

    def walk(node):
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if ref is not None:
            target = definitions.get(ref.rsplit("/", 1)[-1])
            if target is None:
                return node
            inlined = deepcopy(target)
            inlined.update({k: v for k, v in node.items() if k != "$ref"})
            return walk(inlined)

        collapsed = _collapse_optional(node)
        if collapsed is not None:
            return walk(collapsed)

        return {k: walk(v) for k, v in node.items() if k not in _REJECTED_KEYWORDS}

    return walk(schema)


def get_model(
    model_name: str | None = None,
    temperature: float = 0.2,
    json_mode: bool = False,
    response_schema: dict | None = None,
    system_instruction: str | None = None,
):
    """Build a ``GenerativeModel`` for one request.

    ``response_schema`` only applies in JSON mode. The model name falls back
    to ``settings.scoring_model``.
    """
    settings = get_settings()
    genai.configure(api_key=settings.gemini_api_key)

    config: dict = {"temperature": temperature}
    if json_mode:
        config["response_mime_type"] = "application/json"
        if response_schema:
            config["response_schema"] = clean_schema(response_schema)

    return genai.GenerativeModel(
        model_name=model_name or settings.scoring_model,
        generation_config=config,
        system_instruction=system_instruction,
    )
