"""
Pydantic schemas for extracted business cards.
"""

from uuid import uuid4

from pydantic import BaseModel, Field


class ExtractedCard(BaseModel):
    """Contact fields read from one business card image."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = ""
    title: str = ""
    company: str = ""
    email: str = ""
    phone: str = ""
    website: str = ""
    address: str = ""
    is_fallback: bool = False
