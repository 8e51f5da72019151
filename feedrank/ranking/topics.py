"""
Keyword topics and post type of a feed item.

Topic extraction is intentionally naive: lower-cased words of four or more
characters, minus a small stop-word list, de-duplicated in order of first
appearance.
"""
import re

from feedrank.ranking.types import FeedItem

_WORD_RE = re.compile(r"\b\w{3,}\b")

STOP_WORDS = frozenset(
    {
        "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
        "her", "was", "one", "our", "out", "day", "get", "has", "him", "his",
        "how", "its", "may", "new", "now", "old", "see", "two", "who", "boy",
        "did", "she", "use", "way", "what", "when", "with",
    }
)


def extract_topics(text: str) -> list[str]:
    words = _WORD_RE.findall((text or "").lower())
    topics: list[str] = []
    seen: set[str] = set()
    for word in words:
        if len(word) <= 3 or word in STOP_WORDS or word in seen:
            continue
        seen.add(word)
        topics.append(word)
    return topics


def item_topics(item: FeedItem) -> list[str]:
    return extract_topics(item.text)


def post_type(item: FeedItem) -> str:
    """'image' or 'video' from the first attachment, 'text' without media."""
    if item.media:
        return "image" if item.media[0].type == "image" else "video"
    return "text"
