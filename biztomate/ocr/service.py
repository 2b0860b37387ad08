"""
Card extraction service - OpenAI vision call plus output cleaning.

The model is an external collaborator: this module only validates what it
returns, and substitutes an empty fallback card whenever the call fails.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI

from biztomate.config import get_settings
from biztomate.core.exceptions import CardExtractionError
from biztomate.ocr.schemas import ExtractedCard

logger = logging.getLogger(__name__)
settings = get_settings()

EXTRACTION_PROMPT = """You are an expert at extracting information from business cards. Analyze the business card image and extract the following information.

IMPORTANT: You must respond with ONLY a valid JSON object in this exact format:

{
  "name": "Full name of the person",
  "title": "Job title or position",
  "company": "Company or organization name",
  "email": "Email address",
  "phone": "Phone number",
  "website": "Website URL",
  "address": "Full address"
}

Rules:
- Only include fields that are clearly visible on the business card
- If a field is not present or unclear, set it to an empty string ""
- Do not include any text before or after the JSON
- Ensure the JSON is properly formatted and valid
- Do not use null values, use empty strings instead"""

USER_INSTRUCTION = (
    "Please extract the contact information from this business card and return only the JSON object:"
)

CARD_FIELDS = ("name", "title", "company", "email", "phone", "website", "address")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[+]?[(]?[0-9]{1,4}[)]?[-\s.]?[0-9]{1,4}[-\s.]?[0-9]{1,9}$")
WEBSITE_RE = re.compile(
    r"^(https?://)?(www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"([-a-zA-Z0-9()@:%_+.~#?&/=]*)$"
)
CODE_FENCE_RE = re.compile(r"```(?:json)?\s*")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value))


def is_valid_phone(value: str) -> bool:
    return bool(PHONE_RE.match(value))


def is_valid_website(value: str) -> bool:
    return bool(WEBSITE_RE.match(value))


FIELD_VALIDATORS = {
    "email": is_valid_email,
    "phone": is_valid_phone,
    "website": is_valid_website,
}


def fallback_card() -> ExtractedCard:
    """Empty card with a fresh id, returned whenever extraction fails."""
    return ExtractedCard(is_fallback=True)


def parse_completion(content: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of a model completion.

    Raises:
        CardExtractionError: If no JSON object can be found or parsed
    """
    cleaned = CODE_FENCE_RE.sub("", content.strip())
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise CardExtractionError("No JSON object in model response")

    try:
        data = json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        raise CardExtractionError(f"Model response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CardExtractionError("Model response is not a JSON object")
    return data


def clean_extraction(data: Dict[str, Any]) -> Optional[ExtractedCard]:
    """
    Keep trimmed string fields; drop contact fields that fail syntax checks.

    Returns:
        The cleaned card, or None when no name was extracted
    """
    cleaned: Dict[str, str] = {}
    for field in CARD_FIELDS:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            continue
        value = value.strip()
        validator = FIELD_VALIDATORS.get(field)
        if validator and not validator(value):
            logger.info(f"[CardExtraction] Dropping invalid {field}")
            continue
        cleaned[field] = value

    if not cleaned.get("name"):
        return None
    return ExtractedCard(**cleaned)


class CardExtractionService:
    """Extracts contact fields from a card photo through the OpenAI API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        return self._client

    async def extract(self, image_base64: str, mime_type: str = "image/jpeg") -> ExtractedCard:
        """
        Extract a card from a base64-encoded image.

        Never raises for model or network failures: those yield fallback_card().
        """
        try:
            content = await self._complete(image_base64, mime_type)
            card = clean_extraction(parse_completion(content))
        except CardExtractionError as e:
            logger.error(f"[CardExtraction] {e.message}")
            return fallback_card()
        except (openai.OpenAIError, asyncio.TimeoutError) as e:
            logger.error(f"[CardExtraction] OpenAI request failed: {e}")
            return fallback_card()

        if card is None:
            logger.info("[CardExtraction] No valid name extracted, using fallback card")
            return fallback_card()

        logger.info(f"[CardExtraction] Extracted card {card.id}")
        return card

    async def _complete(self, image_base64: str, mime_type: str) -> str:
        response = await self.client.chat.completions.create(
            model=settings.openai_model,
            messages=[
                {"role": "system", "content": EXTRACTION_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_INSTRUCTION},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{image_base64}"},
                        },
                    ],
                },
            ],
            response_format={"type": "json_object"},
            max_completion_tokens=1000,
            timeout=settings.ocr_timeout,
        )

        if not response.choices or not response.choices[0].message.content:
            raise CardExtractionError("Empty response from model")
        return response.choices[0].message.content
