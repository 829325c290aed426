"""
Tests for character system prompts.
"""
from src.services.prompts import BEHAVIOR_INSTRUCTIONS, CLOSING, build_system_prompt, greed_clause

SAKURA = {
    "name": "Sakura",
    "age": 24,
    "occupation": "nurse",
    "personality": "kind and caring",
    "description": "Pink hair, always smiling",
    "background": "Grew up in Kyoto",
    "interests": ["gardening", "tea"],
    "greed_factor": 0,
}


class TestBuildSystemPrompt:
    """Composing the persona prompt."""

    def test_full_character(self):
        prompt = build_system_prompt(SAKURA)
        parts = prompt.split("\n\n")

        assert parts[0] == "You are Sakura, a nurse, 24 years old."
        assert parts[1] == "Your personality is kind and caring."
        assert parts[2] == "Description: Pink hair, always smiling"
        assert parts[3] == "Your background: Grew up in Kyoto"
        assert parts[4] == "Your interests include gardening, tea."
        assert parts[5] == BEHAVIOR_INSTRUCTIONS
        assert parts[-1] == CLOSING

    def test_greed_zero_never_mentions_merchandise(self):
        assert "merchandise" not in build_system_prompt(SAKURA)

    def test_greed_five(self):
        """The maximum greed factor promotes every 2-3 messages."""
        prompt = build_system_prompt(dict(SAKURA, greed_factor=5))
        assert "merchandise" in prompt
        assert "every 2-3 messages" in prompt

    def test_camel_case_greed_factor(self):
        prompt = build_system_prompt({"name": "Yuki", "greedFactor": 2})
        assert "roughly every 10 messages" in prompt

    def test_missing_fields_are_omitted(self):
        """Absent fields produce no clause at all."""
        prompt = build_system_prompt({"name": "Yuki", "interests": []})

        assert prompt.startswith("You are Yuki.")
        assert "personality" not in prompt
        assert "Description:" not in prompt
        assert "background" not in prompt
        assert "interests" not in prompt
        assert prompt.split("\n\n") == ["You are Yuki.", BEHAVIOR_INSTRUCTIONS, CLOSING]

    def test_deterministic(self):
        assert build_system_prompt(SAKURA) == build_system_prompt(dict(SAKURA))


class TestGreedClause:

    def test_levels(self):
        assert greed_clause(0) is None
        assert "very rarely" in greed_clause(1)

    def test_out_of_range_is_clamped(self):
        assert greed_clause(9) == greed_clause(5)
        assert greed_clause(-3) is None
        assert greed_clause("bogus") is None
