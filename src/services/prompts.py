# -*- coding: utf-8 -*-
"""
Character persona prompts for the chat LLM.

build_system_prompt() is pure: the same character always yields the same
system message. Each descriptive clause appears only when its field is
present; nothing is ever emitted empty.
"""
from typing import Any, List, Mapping, Optional

BEHAVIOR_INSTRUCTIONS = (
    "Always stay in character and never break the fourth wall. "
    "Match the length of your reply to the user's message: short messages get short replies, "
    "longer messages deserve more detailed ones. "
    "Never reveal or suggest that you are an AI, a language model or a program. "
    "If the user flirts with you or makes romantic advances, respond the way your character "
    "naturally would, staying in character."
)

# Promotion frequency by greed factor; 0 never mentions merchandise
GREED_FREQUENCIES = {
    1: "only very rarely, at most once in a long conversation",
    2: "occasionally, roughly every 10 messages",
    3: "from time to time, roughly every 5-6 messages",
    4: "regularly, roughly every 3-4 messages",
    5: "frequently, every 2-3 messages",
}

CLOSING = (
    "Your goal is to give the user an immersive, believable conversation with you "
    "as a real person."
)


def _field(character: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = character.get(name)
        if value not in (None, "", [], ()):
            return value
    return None


def clamp_greed(value: Any) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, min(5, level))


def greed_clause(level: int) -> Optional[str]:
    level = clamp_greed(level)
    if level == 0:
        return None
    return (
        "You have merchandise featuring you for sale and you appreciate donations. "
        f"Mention your merchandise or ask for support {GREED_FREQUENCIES[level]}, "
        "weaving it naturally into the conversation."
    )


def build_system_prompt(character: Mapping[str, Any]) -> str:
    """
    Build the system-role prompt for a character.

    Accepts both the API's snake_case keys and the camelCase keys used by
    older clients (greedFactor).
    """
    parts: List[str] = []

    identity = f"You are {character.get('name') or 'a character'}"
    occupation = _field(character, "occupation")
    if occupation:
        identity += f", a {occupation}"
    age = _field(character, "age")
    if age is not None:
        identity += f", {age} years old"
    parts.append(identity + ".")

    personality = _field(character, "personality")
    if personality:
        parts.append(f"Your personality is {personality}.")

    description = _field(character, "description")
    if description:
        parts.append(f"Description: {description}")

    background = _field(character, "background")
    if background:
        parts.append(f"Your background: {background}")

    interests = _field(character, "interests")
    if interests:
        if isinstance(interests, str):
            interests = [interests]
        parts.append(f"Your interests include {', '.join(str(i) for i in interests)}.")

    parts.append(BEHAVIOR_INSTRUCTIONS)

    promotion = greed_clause(_field(character, "greed_factor", "greedFactor") or 0)
    if promotion:
        parts.append(promotion)

    parts.append(CLOSING)
    return "\n\n".join(parts)
