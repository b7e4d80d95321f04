"""
Quran API Client

Client for the AlQuran Cloud API (no API key required), used as the verse
provider for reference fusion and for verse explanations.

Error semantics
---------------
- Transport errors, timeouts, non-success HTTP statuses and malformed payloads
  are raised as `ProviderUnavailable`.
- A 404 from the search endpoint means "no matches", not a failure.
- Invalid arguments (surah out of range, keyword too short) raise ValueError
  before any network call.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..config import settings
from ..core.errors import ProviderUnavailable
from ..guard.lexicon import Lexicon, get_lexicon
from .cache import ReferenceCache, reference_cache
from .models import SurahInfo, VerseDetail, VerseRef, VerseSearchResult

logger = logging.getLogger("taqwa.quran")

ARABIC_EDITION = "ar.alafasy"
SURAH_COUNT = 114


class QuranClient:
    """
    Verse provider backed by api.alquran.cloud.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        edition: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[ReferenceCache] = None,
        lexicon: Optional[Lexicon] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = str(base_url or settings.quran_api_base_url).rstrip("/")
        self.edition = edition or settings.quran_edition
        self.timeout = timeout if timeout is not None else settings.provider_timeout
        self._cache = cache if cache is not None else reference_cache
        self._lexicon = lexicon or get_lexicon()
        self._transport = transport

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        path: str,
        allow_not_found: bool = False,
    ) -> Optional[Any]:
        """
        GET `path` and return the `data` member of the response envelope.

        Returns None on 404 when `allow_not_found` is set.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get(path)
            if allow_not_found and resp.status_code == 404:
                return None
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            logger.warning("Quran API request failed (%s): %s", type(exc).__name__, path)
            raise ProviderUnavailable(f"Quran API request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise ProviderUnavailable("Quran API returned invalid JSON") from exc

        if not isinstance(payload, dict) or payload.get("code") != 200:
            raise ProviderUnavailable(f"Quran API returned an error envelope for {path}")
        return payload.get("data")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search_by_keyword(self, keyword: str) -> VerseSearchResult:
        """
        Free-text search in the configured translation edition.
        """
        if not keyword or len(keyword.strip()) < 2:
            raise ValueError("Search keyword must be at least 2 characters.")

        path = f"/search/{quote(keyword.strip(), safe='')}/{self.edition}"
        data = await self._request(path, allow_not_found=True)
        if not data:
            return VerseSearchResult()

        try:
            matches = [
                VerseRef(
                    surah=m["surah"]["number"],
                    surah_name=m["surah"].get("englishName", ""),
                    ayah=m["numberInSurah"],
                    text=m.get("text", ""),
                )
                for m in data.get("matches", [])
            ]
            return VerseSearchResult(count=data.get("count", len(matches)), matches=matches)
        except (KeyError, TypeError, AttributeError, ValidationError) as exc:
            raise ProviderUnavailable("Malformed Quran search payload") from exc

    async def search_by_topic(self, topic: str, limit: int = 5) -> List[VerseRef]:
        """
        Run the topic's search terms and return up to `limit` distinct verses.

        A failing term is skipped; the remaining terms still run.
        """
        unique: Dict[str, VerseRef] = {}
        for term in self._lexicon.verse_search_terms(topic):
            if len(unique) >= limit:
                break
            try:
                result = await self.search_by_keyword(term)
            except (ProviderUnavailable, ValueError):
                logger.warning("Verse search failed for term %r", term)
                continue
            for match in result.matches:
                unique.setdefault(match.key, match)

        return list(unique.values())[:limit]

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def get_ayah(self, surah: int, ayah: int) -> Optional[VerseDetail]:
        """
        Fetch one verse with its Arabic text and translation.

        Returns None if the verse does not exist.
        """
        if surah < 1 or surah > SURAH_COUNT:
            raise ValueError(f"Invalid Surah number. Must be between 1 and {SURAH_COUNT}.")
        if ayah < 1:
            raise ValueError("Invalid Ayah number.")

        path = f"/ayah/{surah}:{ayah}/editions/{ARABIC_EDITION},{self.edition}"
        data = await self._request(path, allow_not_found=True)
        if not data:
            return None

        try:
            arabic, translation = data[0], data[1]
            return VerseDetail(
                surah=surah,
                ayah=ayah,
                surah_name=arabic["surah"]["englishName"],
                surah_name_arabic=arabic["surah"].get("name", ""),
                text_arabic=arabic.get("text", ""),
                text_translation=translation.get("text", ""),
                edition=translation.get("edition", {}).get("name", ""),
                juz=arabic.get("juz"),
                page=arabic.get("page"),
            )
        except (KeyError, IndexError, TypeError, AttributeError, ValidationError) as exc:
            raise ProviderUnavailable(f"Malformed ayah payload for {surah}:{ayah}") from exc

    async def get_all_surahs(self) -> List[SurahInfo]:
        """List of all surahs, served from the reference cache when fresh."""

        async def _load() -> List[SurahInfo]:
            data = await self._request("/surah")
            if not isinstance(data, list):
                raise ProviderUnavailable("Malformed surah list payload")
            return data

        surahs = await self._cache.get_or_load(("quran", "surahs"), _load)
        return list(surahs)
