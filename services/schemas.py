"""JSON schemas for generated draft output."""

from __future__ import annotations

DRAFT_BRIEF_SCHEMA: dict[str, object] = {
    "type": "object",
    "required": ["title", "content", "estimated_aeo_score", "target_keywords"],
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "content": {"type": "string", "minLength": 1},
        "estimated_aeo_score": {"type": "number", "minimum": 0, "maximum": 100},
        "target_keywords": {
            "type": "array",
            "minItems": 1,
            "items": {"type": "string", "minLength": 1},
        },
    },
}
