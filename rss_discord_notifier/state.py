"""
JSON state file tracking notified articles.

Keeps a per-feed record of announced articles so nothing is sent
twice across runs, with age and size bounds applied on save.
"""

import logging
import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from rss_discord_notifier.models import Article

logger = logging.getLogger(__name__)

STATE_VERSION = "1.0"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateError(Exception):
    """Raised when the state file cannot be read, parsed or written."""


class NotifiedArticle(BaseModel):
    """Record of one announced article."""

    id: str
    title: str = ""
    url: str = ""
    published_at: datetime
    notified_at: datetime

    @field_validator("published_at", "notified_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Read timestamps without an offset as UTC."""
        return v.replace(tzinfo=timezone.utc) if v.tzinfo is None else v


class FeedState(BaseModel):
    """
    State of a single feed.

    ``notified_articles`` is append-only and is not deduplicated here;
    callers check :meth:`is_article_notified` before adding.
    """

    last_check: datetime = Field(default_factory=_utcnow)
    notified_articles: list[NotifiedArticle] = Field(default_factory=list)

    @field_validator("notified_articles", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def is_article_notified(self, article_id: str) -> bool:
        """Return True if an article with this id has been recorded."""
        return any(notified.id == article_id for notified in self.notified_articles)

    def add_notified_article(self, article: Article, notified_at: datetime | None = None) -> None:
        """Append a record for ``article`` and refresh ``last_check``."""
        now = notified_at or _utcnow()
        self.notified_articles.append(
            NotifiedArticle(
                id=article.id,
                title=article.title,
                url=article.url,
                published_at=article.published_at,
                notified_at=now,
            )
        )
        self.last_check = now

    def cleanup_old_articles(self, days_old: int, now: datetime | None = None) -> int:
        """
        Drop records notified more than ``days_old`` days ago.

        Returns
        -------
        int
            Number of records removed.
        """
        if days_old <= 0:
            return 0

        cutoff = (now or _utcnow()) - timedelta(days=days_old)
        before = len(self.notified_articles)
        self.notified_articles = [
            notified for notified in self.notified_articles if notified.notified_at > cutoff
        ]
        return before - len(self.notified_articles)

    def limit_article_count(self, max_count: int) -> int:
        """
        Keep only the ``max_count`` most recently notified records.

        Records are ordered by notification time first, so the newest are
        kept even if they were appended out of order.

        Returns
        -------
        int
            Number of records removed.
        """
        if max_count <= 0 or len(self.notified_articles) <= max_count:
            return 0

        before = len(self.notified_articles)
        ordered = sorted(self.notified_articles, key=lambda notified: notified.notified_at)
        self.notified_articles = ordered[-max_count:]
        return before - max_count


class Statistics(BaseModel):
    """Cumulative run statistics."""

    total_articles_notified: int = 0
    total_feeds_checked: int = 0
    last_run_duration: float = 0.0


class State(BaseModel):
    """The whole persisted document."""

    version: str = STATE_VERSION
    last_update: datetime = Field(default_factory=_utcnow)
    feeds: dict[str, FeedState] = Field(default_factory=dict)
    statistics: Statistics = Field(default_factory=Statistics)

    @field_validator("feeds", "statistics", mode="before")
    @classmethod
    def null_as_default(cls, v: Any) -> Any:
        return {} if v is None else v

    def get_feed_state(self, feed_url: str) -> FeedState:
        """Return the state of a feed, creating it if needed."""
        if feed_url not in self.feeds:
            self.feeds[feed_url] = FeedState()
        return self.feeds[feed_url]


class StateStore:
    """
    File-backed store of notified articles.

    Loaded once at start, mutated in memory during the run and written
    back atomically by :meth:`save`.
    """

    def __init__(
        self,
        path: str | Path,
        max_articles_per_feed: int = 100,
        cleanup_days: int = 30,
    ):
        """
        Initialize the store.

        Parameters
        ----------
        path : str | Path
            Path to the JSON state file.
        max_articles_per_feed : int
            Records kept per feed on save. Non-positive disables the bound.
        cleanup_days : int
            Records older than this are dropped on save. Non-positive disables it.
        """
        self.path = Path(path)
        self.max_articles_per_feed = max_articles_per_feed
        self.cleanup_days = cleanup_days
        self._state = State()

    @property
    def state(self) -> State:
        """The in-memory state document."""
        return self._state

    def load(self) -> None:
        """
        Load the state file.

        A missing file yields a fresh state.

        Raises
        ------
        StateError
            If the file exists but cannot be read or parsed.
        """
        if not self.path.exists():
            logger.info("State file %s not found, starting with empty state", self.path)
            self._state = State()
            return

        try:
            data = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StateError(f"Failed to read state file {self.path}: {e}") from e

        try:
            self._state = State.model_validate_json(data)
        except ValidationError as e:
            raise StateError(f"Failed to parse state file {self.path}: {e}") from e

        logger.info(
            "Loaded state from %s (last update %s, %d feed(s))",
            self.path,
            self._state.last_update.isoformat(),
            len(self._state.feeds),
        )

    def save(self) -> None:
        """
        Clean up and write the state file atomically.

        Creates parent directories as needed.

        Raises
        ------
        StateError
            If the file cannot be written.
        """
        self.cleanup()
        self._state.last_update = _utcnow()
        data = self._state.model_dump_json(indent=2)

        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = Path(f.name)
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise StateError(f"Failed to write state file {self.path}: {e}") from e

        logger.info(
            "Saved state to %s (%d feed(s), %d article(s) notified in total)",
            self.path,
            len(self._state.feeds),
            self._state.statistics.total_articles_notified,
        )

    def is_first_run(self) -> bool:
        """Return True if no feed has ever been recorded."""
        return not self._state.feeds

    def is_article_notified(self, feed_url: str, article_id: str) -> bool:
        """
        Check if an article has already been notified.

        Unknown feeds are not created by this query.
        """
        feed_state = self._state.feeds.get(feed_url)
        if feed_state is None:
            return False
        return feed_state.is_article_notified(article_id)

    def mark_as_notified(self, article: Article) -> None:
        """Record ``article`` as notified under its feed URL."""
        self._state.get_feed_state(article.feed_url).add_notified_article(article)
        self._state.statistics.total_articles_notified += 1
        logger.debug("Marked article as notified: %s", article.id[:80])

    def get_feed_state(self, feed_url: str) -> FeedState:
        """Return the state of a feed, creating it if needed."""
        return self._state.get_feed_state(feed_url)

    def get_notified_article_count(self, feed_url: str) -> int:
        """Return the number of records kept for a feed."""
        feed_state = self._state.feeds.get(feed_url)
        return len(feed_state.notified_articles) if feed_state else 0

    def update_statistics(self, feeds_checked: int, duration: float) -> None:
        """
        Record the outcome of a run.

        Parameters
        ----------
        feeds_checked : int
            Number of feeds polled during the run.
        duration : float
            Run duration in seconds.
        """
        self._state.statistics.total_feeds_checked += feeds_checked
        self._state.statistics.last_run_duration = duration

    def cleanup(self) -> int:
        """
        Apply the age and size bounds to every feed.

        Returns
        -------
        int
            Number of records removed.
        """
        logger.debug(
            "Cleaning up state (cleanup_days=%d, max_articles_per_feed=%d)",
            self.cleanup_days,
            self.max_articles_per_feed,
        )

        removed = 0
        for feed_url, feed_state in self._state.feeds.items():
            count = feed_state.cleanup_old_articles(self.cleanup_days)
            count += feed_state.limit_article_count(self.max_articles_per_feed)
            if count:
                logger.debug("Removed %d record(s) for feed %s", count, feed_url)
            removed += count

        if removed:
            logger.info("Cleaned up %d old notified article(s)", removed)
        return removed

    def reset(self) -> None:
        """Discard everything and start from an empty state."""
        self._state = State()
        logger.info("State reset")
