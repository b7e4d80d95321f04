"""
Hadith API Client

Client for the Sunnah.com API (requires an `X-API-Key`), used as the
narration provider for reference fusion and for narration explanations.

The API has no full-text search, so keyword search filters the first page of
a small set of collections. Those pages are static reference data and are
served from the shared reference cache.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..config import settings
from ..core.errors import ProviderUnavailable
from ..guard.lexicon import Lexicon, get_lexicon
from .cache import ReferenceCache, reference_cache
from .models import NarrationDetail, NarrationRef

logger = logging.getLogger("taqwa.hadith")


# ---------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------

COLLECTION_NAMES: Dict[str, str] = {
    "bukhari": "Sahih al-Bukhari",
    "muslim": "Sahih Muslim",
    "nasai": "Sunan an-Nasa'i",
    "abudawud": "Sunan Abu Dawud",
    "tirmidhi": "Jami' at-Tirmidhi",
    "ibnmajah": "Sunan Ibn Majah",
    "malik": "Muwatta Malik",
    "ahmad": "Musnad Ahmad",
    "darimi": "Sunan ad-Darimi",
}

DEFAULT_SEARCH_COLLECTIONS = ("bukhari", "muslim")
SEARCH_PAGE_SIZE = 100

AUTHENTIC_GRADES = (
    "sahih",
    "hasan",
    "صحيح",
    "حسن",
)


class HadithClient:
    """
    Narration provider backed by api.sunnah.com.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[ReferenceCache] = None,
        lexicon: Optional[Lexicon] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if api_key is None and settings.sunnah_api_key is not None:
            api_key = settings.sunnah_api_key.get_secret_value()
        self.api_key = api_key
        self.base_url = str(base_url or settings.sunnah_api_base_url).rstrip("/")
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
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        if not self.api_key:
            raise ProviderUnavailable("SUNNAH_API_KEY is not configured")

        headers = {"X-API-Key": self.api_key}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                resp = await client.get(path, params=params, headers=headers)
            if allow_not_found and resp.status_code == 404:
                return None
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            logger.warning("Hadith API request failed (%s): %s", type(exc).__name__, path)
            raise ProviderUnavailable(f"Hadith API request failed: {type(exc).__name__}") from exc
        except ValueError as exc:
            raise ProviderUnavailable("Hadith API returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise ProviderUnavailable(f"Hadith API returned a non-object payload for {path}")
        return payload

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def get_hadith(self, collection: str, number: str | int) -> Optional[NarrationDetail]:
        """
        Fetch one narration. Returns None if it does not exist.
        """
        data = await self._request(
            f"/collections/{collection}/hadiths/{number}",
            allow_not_found=True,
        )
        if data is None:
            return None
        return _parse_hadith(collection, data)

    async def get_hadiths(
        self,
        collection: str,
        page: int = 1,
        limit: int = 20,
    ) -> List[NarrationDetail]:
        """One page of a collection, served from the reference cache when fresh."""

        async def _load() -> List[NarrationDetail]:
            data = await self._request(
                f"/collections/{collection}/hadiths",
                params={"page": page, "limit": limit},
            )
            records = data.get("data") if data else None
            if not isinstance(records, list):
                raise ProviderUnavailable(f"Malformed hadith page for {collection}")
            return [_parse_hadith(collection, raw) for raw in records]

        return list(await self._cache.get_or_load(("hadiths", collection, page, limit), _load))

    async def get_collections(self) -> List[Dict[str, Any]]:
        """Available collections with display names, cached."""

        async def _load() -> List[Dict[str, Any]]:
            data = await self._request("/collections")
            records = data.get("data") if data else None
            if not isinstance(records, list):
                raise ProviderUnavailable("Malformed collections payload")
            return [
                {
                    "name": c.get("name"),
                    "display_name": COLLECTION_NAMES.get(c.get("name"), c.get("name")),
                    "total_hadith": c.get("totalHadith"),
                    "total_available_hadith": c.get("totalAvailableHadith"),
                }
                for c in records
                if isinstance(c, dict)
            ]

        return list(await self._cache.get_or_load(("hadith", "collections"), _load))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        keyword: str,
        collection: Optional[str] = None,
        max_results: int = 10,
    ) -> List[NarrationDetail]:
        """
        Narrations whose text contains `keyword` (case-insensitive).

        Only the first page of each searched collection is scanned.
        """
        if not keyword or len(keyword.strip()) < 3:
            raise ValueError("Search keyword must be at least 3 characters.")

        needle = keyword.strip().lower()
        collections = [collection] if collection else list(DEFAULT_SEARCH_COLLECTIONS)
        results: List[NarrationDetail] = []

        for col in collections:
            try:
                page = await self.get_hadiths(col, 1, SEARCH_PAGE_SIZE)
            except ProviderUnavailable:
                logger.warning("Hadith search failed for collection %s", col)
                continue
            results.extend(
                h for h in page
                if needle in (h.text_english or h.text_arabic).lower()
            )
            if len(results) >= max_results:
                break

        return results[:max_results]

    async def search_by_topic(self, topic: str, limit: int = 5) -> List[NarrationRef]:
        """
        Run the topic's search terms and return up to `limit` distinct narrations.
        """
        unique: Dict[str, NarrationRef] = {}
        for term in self._lexicon.narration_search_terms(topic):
            if len(unique) >= limit:
                break
            try:
                matches = await self.search(term, None, limit)
            except (ProviderUnavailable, ValueError):
                logger.warning("Narration search failed for term %r", term)
                continue
            for match in matches:
                ref = match.to_ref()
                unique.setdefault(f"{match.collection}:{match.hadith_number}", ref)

        return list(unique.values())[:limit]

    @staticmethod
    def is_authentic(narration: NarrationRef | NarrationDetail) -> bool:
        """True for Sahih or Hasan grades."""
        grade = (narration.grade or "").lower()
        return any(g in grade for g in AUTHENTIC_GRADES)


# ---------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------

def _parse_hadith(collection: str, raw: Dict[str, Any]) -> NarrationDetail:
    try:
        bodies = raw.get("hadith") or []
        arabic = next((b for b in bodies if b.get("lang") == "ar"), bodies[0] if bodies else {})
        english = next(
            (b for b in bodies if b.get("lang") == "en"),
            bodies[1] if len(bodies) > 1 else arabic,
        )
        grades = arabic.get("grades") or english.get("grades") or []
        number = str(raw["hadithNumber"])
        name = COLLECTION_NAMES.get(collection, collection)
        return NarrationDetail(
            collection=collection,
            collection_name=name,
            hadith_number=number,
            book_number=str(raw["bookNumber"]) if raw.get("bookNumber") is not None else None,
            text_arabic=arabic.get("body", ""),
            text_english=english.get("body", ""),
            grade=grades[0].get("grade", "Unknown") if grades else "Unknown",
            reference=f"{name} {number}",
        )
    except (KeyError, TypeError, AttributeError, ValidationError) as exc:
        raise ProviderUnavailable(f"Malformed hadith payload in {collection}") from exc
