# File: app/domain/catalog.py
import re
from typing import Any, Awaitable, Callable, Iterable, List, Optional
from urllib.parse import quote

from app.domain.models import ProductCard, SearchHit

SHORT_DESC_MAX_CHARS = 180
CHAT_UTM_QUERY = "utm_source=chat&utm_medium=cta&utm_campaign=ai_recs"
UNTITLED_PRODUCT = "(Tanpa Judul)"

_NON_SLUG_CHARS = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASH_RUNS = re.compile(r"-+")


def to_slug(value: str) -> str:
    slug = _NON_SLUG_CHARS.sub("", (value or "").lower().strip())
    slug = _WHITESPACE.sub("-", slug)
    return _DASH_RUNS.sub("-", slug)


async def unique_slug(base: str, is_taken: Callable[[str], Awaitable[bool]]) -> str:
    """Returns `to_slug(base)`, or the first free `<slug>-2`, `<slug>-3`, ... variant."""
    root = to_slug(base)
    slug = root
    suffix = 2
    while await is_taken(slug):
        slug = f"{root}-{suffix}"
        suffix += 1
    return slug


def normalize_string_array(value: Any) -> List[str]:
    """Accepts a list or a comma separated string; returns trimmed, lower-cased, non-empty items."""
    if not value:
        return []
    items: Iterable[Any] = value if isinstance(value, (list, tuple)) else str(value).split(",")
    return [s for s in (str(x).strip().lower() for x in items) if s]


def build_embedding_basis(name: str, description: Optional[str] = None, tags: Optional[List[str]] = None) -> str:
    """Text used to compute a product's passage vector."""
    return "\n".join([name or "", description or "", *(tags or [])]).strip()


def build_badges(species: List[str], use_cases: List[str]) -> List[str]:
    badges = [f"Cocok untuk {', '.join(species)}"] if species else []
    badges.extend(use_cases)
    return badges


def shorten_description(text: Optional[str], limit: int = SHORT_DESC_MAX_CHARS) -> str:
    text = text or ""
    return text[:limit] + "…" if len(text) > limit else text


def to_product_card(hit: SearchHit) -> Optional[ProductCard]:
    """
    Maps a search hit to the chat payload. Hits without a slug cannot be resolved
    to a catalog page and are dropped.
    """
    if not hit.slug:
        return None

    return ProductCard(
        id=hit.id or hit.slug,
        slug=hit.slug,
        title=hit.title or UNTITLED_PRODUCT,
        short_desc=shorten_description(hit.short_desc),
        image=hit.image,
        stock=hit.stock,
        score=hit.score,
        species=hit.species[:3],
        price=hit.price,
        unit=hit.unit,
        url=f"/marketplace/product/{quote(hit.slug, safe='')}?{CHAT_UTM_QUERY}",
    )
