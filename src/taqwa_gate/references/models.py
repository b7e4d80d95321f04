"""
Reference Models

Pydantic models for retrieved scriptural passages and the bundle attached to a
generated answer. Each reference carries enough identity to be fetched again
(surah/ayah for verses, collection/number for narrations) plus its display
text.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class VerseRef(BaseModel):
    """A single Quran verse."""
    surah: int = Field(..., ge=1, le=114)
    surah_name: str = ""
    ayah: int = Field(..., ge=1)
    text: str = ""

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def key(self) -> str:
        return f"{self.surah}:{self.ayah}"


class NarrationRef(BaseModel):
    """A single hadith narration."""
    collection: str = Field(..., min_length=1)
    number: str = Field(..., min_length=1)
    text: str = ""
    grade: str = "Unknown"

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def key(self) -> str:
        return f"{self.collection}:{self.number}"


class VerseSearchResult(BaseModel):
    """Free-text verse search response."""
    count: int = Field(default=0, ge=0)
    matches: List[VerseRef] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class ReferenceBundle(BaseModel):
    """
    Verses and narrations gathered for a question.

    Always shape-complete: both lists exist even when empty.
    """
    verses: List[VerseRef] = Field(default_factory=list)
    narrations: List[NarrationRef] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @property
    def is_empty(self) -> bool:
        return not self.verses and not self.narrations


class VerseDetail(BaseModel):
    """A verse fetched by reference, with the Arabic text and translation."""
    surah: int
    ayah: int
    surah_name: str = ""
    surah_name_arabic: str = ""
    text_arabic: str = ""
    text_translation: str = ""
    edition: str = ""
    juz: Optional[int] = None
    page: Optional[int] = None

    model_config = ConfigDict(extra="ignore")


class NarrationDetail(BaseModel):
    """A narration fetched by reference."""
    collection: str
    collection_name: str = ""
    hadith_number: str
    book_number: Optional[str] = None
    text_arabic: str = ""
    text_english: str = ""
    grade: str = "Unknown"
    reference: str = ""

    model_config = ConfigDict(extra="ignore")

    def to_ref(self) -> NarrationRef:
        return NarrationRef(
            collection=self.collection_name or self.collection,
            number=self.hadith_number,
            text=self.text_english or self.text_arabic,
            grade=self.grade,
        )


SurahInfo = Dict[str, Any]
