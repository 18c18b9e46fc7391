"""Text helpers shared by the news correlator and the news-only fallback."""

import re
from typing import Iterable, List, Optional

from stock_events.models.datatypes import NewsArticle

# Corporate suffixes stripped before tokenising a company name.
# Only legal suffixes; descriptors like 'Industries' or 'Services' stay.
CORPORATE_SUFFIXES = [
    "limited", "ltd", "ltd.", "corporation", "corp", "corp.",
    "incorporated", "inc", "inc.", "plc", "co", "co.", "company",
    "holdings", "n.v.", "s.a.", "ag",
]

MIN_TOKEN_LENGTH = 4


def strip_suffix(long_name: str) -> str:
    """Remove trailing corporate suffixes from a company long name.

    Examples:
        ``"Salesforce, Inc."`` → ``"Salesforce"``
        ``"Microsoft Corporation"`` → ``"Microsoft"``

    Args:
        long_name (str): Full company name from the profile provider.

    Returns:
        str: Name with trailing corporate suffix removed, stripped of whitespace.
    """
    pattern = r"[\s,]+(" + "|".join(re.escape(s) for s in CORPORATE_SUFFIXES) + r")[\s.]*$"
    previous = None
    name = long_name.strip()
    # "Foo Holdings Inc." carries two suffixes
    while name != previous:
        previous = name
        name = re.sub(pattern, "", name, flags=re.IGNORECASE).strip()
    return name


def build_mention_terms(symbol: str, company_name: Optional[str] = None) -> List[str]:
    """Return the lower-cased terms whose presence counts as a company mention.

    The ticker, the full company name, the name without its legal suffix, and
    every word of at least four characters from that name. The match is
    deliberately loose: ``"Apple Inc."`` makes any article saying "apple" count.
    """
    terms = [symbol.lower()]
    cleaned = (company_name or "").lower().strip()
    if cleaned:
        terms.append(cleaned)
        stripped = strip_suffix(cleaned)
        if stripped:
            terms.append(stripped)
        for token in stripped.split():
            token = token.strip(".,;:()'\"")
            if len(token) >= MIN_TOKEN_LENGTH:
                terms.append(token)
    # de-duplicate, keep order
    return list(dict.fromkeys(terms))


def mentions_company(article: NewsArticle, mention_terms: Iterable[str]) -> bool:
    """True if the article's headline or summary contains any mention term (case-insensitive)."""
    text = article.text.lower()
    return any(term in text for term in mention_terms)


def truncate(text: str, max_len: int) -> str:
    """Cut ``text`` to ``max_len`` characters, marking the cut with ``...``."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
