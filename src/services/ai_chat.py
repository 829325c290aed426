# -*- coding: utf-8 -*-
"""
AI service: character chat replies and character artwork.

Both operations are cosmetic. When the LLM is unavailable or the character
is unknown, a canned reply or a placeholder image is returned instead of an
error.
"""
import random
from typing import Any, Mapping, Optional

from src.services.character_cache import CharacterCache
from src.services.errors import ExternalServiceError
from src.services.gateways.llm import LLMGateway
from src.services.metrics import get_metrics_service
from src.services.prompts import build_system_prompt
from src.services.structured_logging import get_logger

logger = get_logger("waifu.ai")

GENERIC_FALLBACK_RESPONSES = [
    "Hi there! I'd love to chat with you. What would you like to talk about?",
    "Hello! I'm excited to get to know you better. Feel free to ask me anything!",
    "Hey! I'm here and ready to chat. What's on your mind today?",
    "Hi! It's nice to meet you. I'd love to hear more about you!",
    "Hello there! I'm looking forward to our conversation. What interests you?",
]

STYLE_GUIDES = {
    "anime": (
        "Japanese anime art style with clean lines, vibrant colors, and large expressive eyes. "
        "Semi-realistic proportions, detailed hair with dynamic shading, soft cel-shading technique. "
        "High contrast lighting with subtle ambient occlusion."
    ),
    "retro": (
        "80s-90s classic anime style with bold outlines and a vintage color palette. "
        "Retro fashion, big sparkly eyes and detailed hand-drawn shading in the style of "
        "90s shoujo manga."
    ),
    "gothic": (
        "Gothic lolita anime style with a Victorian-inspired black and dark purple dress, "
        "frilly accessories and elegant ribbons. Pale skin, melancholic expression, dark "
        "atmospheric background with gothic architecture."
    ),
    "neocyber": (
        "Cyberpunk anime style with neon hair highlights and futuristic fashion. Holographic "
        "accessories, glowing tech patterns, urban night background with neon signs."
    ),
    "realistic": (
        "Semi-realistic digital painting with natural proportions, detailed skin and fabric "
        "textures and soft studio lighting."
    ),
    "fantasy": (
        "Magical anime style with a flowing ethereal dress and mystical accessories. Flowing hair "
        "with magical particles, ornate decorations and a soft dreamy background."
    ),
    "sci-fi": (
        "Futuristic anime style in a sleek pilot suit or high-tech armor with glowing accents. "
        "Holographic displays and mechanical elements in the background."
    ),
    "chibi": (
        "Ultra-cute chibi style with exaggerated kawaii features: extra large head and eyes, tiny "
        "body, pastel colors and a bubbly, cheerful background."
    ),
}

QUALITY_GUIDE = (
    " Render in high detail with professional illustration quality, strong depth of field and "
    "careful composition. Generate only one character, no additional characters or faces. "
    "No text, watermarks, or signatures."
)

PLACEHOLDER_IMAGES = {
    "anime": "https://i.pinimg.com/736x/a1/1a/c5/a11ac53d6c37a8f3ed2cf9afbe9e5e0a.jpg",
    "retro": "https://i.pinimg.com/564x/0a/53/c2/0a53c2a681df11c0e2f70d80a9a6c289.jpg",
    "gothic": "https://i.pinimg.com/564x/8e/0d/57/8e0d5790a4644ab4c93c5f3b953fcc0c.jpg",
    "neocyber": "https://i.pinimg.com/564x/bd/57/a3/bd57a33e4ee9e67671b8c7ff6b75cda1.jpg",
    "realistic": "https://i.pinimg.com/564x/11/97/3e/11973e4b0efb0c36af1a1af54c2357f6.jpg",
    "fantasy": "https://i.pinimg.com/564x/c3/0c/13/c30c1320b64f4a13e1046b2d7b5c4a7a.jpg",
    "sci-fi": "https://i.pinimg.com/564x/a1/52/10/a15210aa82e5385bd190c0e2dd0a9281.jpg",
    "chibi": "https://i.pinimg.com/564x/b5/86/80/b58680b0d06c752b0d3f3e6e5ea47c04.jpg",
}


def _record_fallback(operation: str, reason: str, **kwargs: Any) -> None:
    logger.log_fallback(operation, reason, **kwargs)
    metrics = get_metrics_service()
    if metrics:
        metrics.record_fallback(operation)


def character_greeting(character: Mapping[str, Any]) -> str:
    """Canned in-character greeting built from whatever the character has."""
    text = f"Hi there! I'm {character.get('name')}"
    if character.get("occupation"):
        text += f", {character['occupation']}"
    text += "."
    if character.get("personality"):
        text += f" I'm known for being {character['personality']}."
    interests = character.get("interests") or []
    if interests:
        text += f" I'm interested in {', '.join(interests)}."
    return text + " What would you like to talk about?"


class ChatService:
    """Generates in-character replies through the LLM gateway"""

    def __init__(self, llm: LLMGateway, characters: CharacterCache, rng: Optional[random.Random] = None):
        self.llm = llm
        self.characters = characters
        self.rng = rng or random.Random()

    def fallback_response(self, character_id: Optional[str]) -> str:
        character = self.characters.peek(character_id) if character_id else None
        if character:
            return character_greeting(character)
        return self.rng.choice(GENERIC_FALLBACK_RESPONSES)

    def reply(self, character_id: Optional[str], message: str) -> str:
        character = self.characters.get(character_id) if character_id else None
        if character is None:
            _record_fallback("chat", "character_not_found", character_id=character_id)
            return self.fallback_response(character_id)

        system_prompt = build_system_prompt(character)
        try:
            response = self.llm.chat_completion(system_prompt, message)
        except ExternalServiceError as e:
            _record_fallback("chat", e.message, character_id=character_id)
            return character_greeting(character)
        if not response:
            _record_fallback("chat", "empty_response", character_id=character_id)
            return character_greeting(character)

        logger.info("Generated AI response", character_id=character_id, response_length=len(response))
        return response


class ImageService:
    """Generates character portraits through the LLM gateway's image model"""

    def __init__(self, llm: LLMGateway):
        self.llm = llm

    @staticmethod
    def build_prompt(description: str, personality: str = "", style: str = "anime") -> str:
        prompt = ("Create a high-quality anime character portrait, upper body focus, "
                  "centered composition. ")
        prompt += f"The character has {description}. "
        if personality:
            prompt += (f"Their personality is {personality}, which should be reflected in their "
                       "facial expression, pose, and body language. ")
        prompt += STYLE_GUIDES.get(style, STYLE_GUIDES["anime"])
        return prompt + QUALITY_GUIDE

    @staticmethod
    def placeholder(style: str) -> str:
        return PLACEHOLDER_IMAGES.get(style, PLACEHOLDER_IMAGES["anime"])

    def generate(self, description: str, personality: str = "", style: str = "anime") -> str:
        prompt = self.build_prompt(description, personality, style)
        try:
            url = self.llm.generate_image(prompt)
        except ExternalServiceError as e:
            _record_fallback("generate_image", e.message, style=style)
            return self.placeholder(style)
        logger.info("Generated image", style=style)
        return url
