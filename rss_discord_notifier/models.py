"""
Article model for RSS Discord Notifier.

Normalizes feedparser entries into Article records and provides
the helpers used to validate and display them.
"""

import calendar
import html
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from rss_discord_notifier.config import FeedConfig

# Tags that separate blocks of text
BREAK_TAG_PATTERN = re.compile(r"<br\s*/?>|</p>", re.IGNORECASE)
TAG_PATTERN = re.compile(r"<[^>]*>")
WHITESPACE_PATTERN = re.compile(r"\s+")

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")


def strip_html(text: str) -> str:
    """
    Convert an HTML fragment to plain text.

    Every tag is replaced by a space so words on both sides of a tag
    stay apart, entities are decoded and whitespace runs are collapsed.

    Parameters
    ----------
    text : str
        Raw content possibly containing HTML.

    Returns
    -------
    str
        Cleaned plain text content.
    """
    if not text:
        return ""
    text = BREAK_TAG_PATTERN.sub(" ", text)
    text = TAG_PATTERN.sub(" ", text)
    text = html.unescape(text)
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def _to_datetime(value: Any) -> datetime | None:
    """Convert a feedparser ``*_parsed`` struct_time (UTC) to an aware datetime."""
    if not value:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _extract_image_url(entry: Any) -> str:
    """
    Find a thumbnail for an entry.

    Looks at media thumbnails, then image media content, then image enclosures.
    """
    for thumbnail in entry.get("media_thumbnail") or []:
        if thumbnail.get("url"):
            return thumbnail["url"]

    for media in entry.get("media_content") or []:
        url = media.get("url", "")
        media_type = media.get("type", "") or ""
        if url and (
            media_type.startswith("image/")
            or media.get("medium") == "image"
            or url.lower().endswith(IMAGE_EXTENSIONS)
        ):
            return url

    for enclosure in entry.get("enclosures") or []:
        if (enclosure.get("type", "") or "").startswith("image/") and enclosure.get("href"):
            return enclosure["href"]

    return ""


@dataclass
class Article:
    """
    A single feed entry, ready to be filtered and announced.

    Attributes
    ----------
    id : str
        Unique identifier (feed GUID, or the link when absent).
    title : str
        Article title.
    url : str
        Article URL (link, or the GUID when absent).
    description : str
        Plain-text summary.
    content : str
        Plain-text body.
    author : str
        Author name.
    published_at : datetime
        Publication time.
    updated_at : datetime
        Last update time.
    feed_name : str
        Name of the source feed.
    feed_url : str
        URL of the source feed, the key used for de-duplication.
    category : str
        Category of the source feed.
    webhook_url : str | None
        Dedicated webhook inherited from the feed configuration.
    image_url : str
        Optional thumbnail URL.
    """

    id: str
    title: str
    url: str
    published_at: datetime
    updated_at: datetime
    description: str = ""
    content: str = ""
    author: str = ""
    feed_name: str = ""
    feed_url: str = ""
    category: str = ""
    webhook_url: str | None = None
    image_url: str = ""

    def is_valid(self) -> bool:
        """Return True if the article has an id, a title and a URL."""
        return bool(self.id and self.title and self.url)

    def short_description(self, max_length: int) -> str:
        """
        Return the description cut to ``max_length`` characters.

        Truncated descriptions end with ``...`` when there is room for it.
        """
        if len(self.description) <= max_length:
            return self.description
        if max_length > 3:
            return self.description[: max_length - 3] + "..."
        return self.description[:max_length]

    @classmethod
    def from_feedparser(cls, entry: Any, feed: FeedConfig) -> "Article":
        """
        Create an Article from a feedparser entry.

        Parameters
        ----------
        entry : Any
            A feedparser entry object.
        feed : FeedConfig
            Configuration of the source feed.

        Returns
        -------
        Article
            Normalized article, which may be invalid if the entry lacked
            an identifier, a link or a title.
        """
        guid = entry.get("id", "") or ""
        link = entry.get("link", "") or ""

        raw_description = entry.get("summary", "") or entry.get("description", "") or ""
        raw_content = ""
        if entry.get("content"):
            raw_content = entry["content"][0].get("value", "") or ""

        author = entry.get("author", "") or ""
        if not author and entry.get("author_detail"):
            author = entry["author_detail"].get("name", "") or ""

        published = _to_datetime(entry.get("published_parsed"))
        updated = _to_datetime(entry.get("updated_parsed"))
        published_at = published or updated or datetime.now(timezone.utc)

        return cls(
            id=guid or link,
            title=(entry.get("title", "") or "").strip(),
            url=link or guid,
            description=strip_html(raw_description or raw_content),
            content=strip_html(raw_content or raw_description),
            author=author,
            published_at=published_at,
            updated_at=updated or published_at,
            feed_name=feed.name,
            feed_url=feed.url,
            category=feed.category,
            webhook_url=feed.webhook_url,
            image_url=_extract_image_url(entry),
        )
