"""
Narrow contracts for the two external reference providers consumed by
reference fusion. Concrete HTTP clients live in `quran_client` and
`hadith_client`; tests substitute fakes.
"""

from __future__ import annotations

from typing import List, Protocol

from .models import NarrationRef, VerseRef, VerseSearchResult


class VerseProvider(Protocol):
    async def search_by_topic(self, topic: str, limit: int) -> List[VerseRef]:
        ...

    async def search_by_keyword(self, keyword: str) -> VerseSearchResult:
        ...


class NarrationProvider(Protocol):
    async def search_by_topic(self, topic: str, limit: int) -> List[NarrationRef]:
        ...
