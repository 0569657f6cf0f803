"""
Shared fixtures for RSS Discord Notifier tests.

Provides common test fixtures for use across all test modules.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from rss_discord_notifier.config import (
    AppConfig,
    DiscordConfig,
    FeedConfig,
    NotificationConfig,
    StateConfig,
)
from rss_discord_notifier.models import Article
from rss_discord_notifier.state import StateStore


# Path to test fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

DEFAULT_WEBHOOK = "https://discord.com/api/webhooks/123/default"
FEED_URL = "https://example.com/feed.xml"
BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep environment overrides from leaking into tests."""
    for name in ("DISCORD_WEBHOOK_URL", "STATE_FILE_PATH", "LOG_LEVEL", "LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_rss_path(fixtures_dir: Path) -> Path:
    """Return path to sample RSS feed file."""
    return fixtures_dir / "sample_rss.xml"


@pytest.fixture
def sample_atom_path(fixtures_dir: Path) -> Path:
    """Return path to sample Atom feed file."""
    return fixtures_dir / "sample_atom.xml"


@pytest.fixture
def sample_config_path(fixtures_dir: Path) -> Path:
    """Return path to sample config file."""
    return fixtures_dir / "sample_config.yaml"


@pytest.fixture
def sample_rss_content(sample_rss_path: Path) -> str:
    """Return contents of sample RSS feed."""
    return sample_rss_path.read_text()


@pytest.fixture
def sample_atom_content(sample_atom_path: Path) -> str:
    """Return contents of sample Atom feed."""
    return sample_atom_path.read_text()


@pytest.fixture
def minimal_feed_config() -> FeedConfig:
    """Create a minimal valid feed configuration."""
    return FeedConfig(name="Test Feed", url=FEED_URL, category="Tech")


@pytest.fixture
def make_article() -> Callable[..., Article]:
    """
    Return a factory building valid articles.

    The article published ``day`` days after ``BASE_TIME`` gets the id
    ``article-<day>`` unless overridden.
    """

    def factory(day: int = 0, **overrides: Any) -> Article:
        published = BASE_TIME + timedelta(days=day)
        values: dict[str, Any] = {
            "id": f"article-{day}",
            "title": f"Article {day}",
            "url": f"https://example.com/articles/{day}",
            "description": f"Description of article {day}",
            "content": f"Content of article {day}",
            "author": "Test Author",
            "published_at": published,
            "updated_at": published,
            "feed_name": "Test Feed",
            "feed_url": FEED_URL,
            "category": "Tech",
        }
        values.update(overrides)
        return Article(**values)

    return factory


@pytest.fixture
def sample_article(make_article: Callable[..., Article]) -> Article:
    """Create a fully populated article."""
    return make_article(
        0,
        title="Test Article Title",
        url="https://example.com/test-article",
        image_url="https://example.com/image.png",
    )


@pytest.fixture
def minimal_config_dict() -> dict[str, Any]:
    """
    Create a minimal valid configuration dictionary.

    Returns
    -------
    dict
        Configuration dictionary that can be used to create AppConfig.
    """
    return {
        "discord": {"webhook_url": DEFAULT_WEBHOOK},
        "feeds": [
            {
                "name": "Test Feed",
                "url": FEED_URL,
            }
        ],
    }


@pytest.fixture
def app_config(tmp_path: Path, minimal_feed_config: FeedConfig) -> AppConfig:
    """Create an app configuration with a state file under tmp_path."""
    return AppConfig(
        discord=DiscordConfig(webhook_url=DEFAULT_WEBHOOK, retry_delay=0),
        notification=NotificationConfig(rate_limit_ms=0),
        state=StateConfig(path=str(tmp_path / "state" / "state.json")),
        feeds=[minimal_feed_config],
    )


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    """Return a state file path inside a not-yet-existing directory."""
    return tmp_path / "state" / "state.json"


@pytest.fixture
def state_store(state_path: Path) -> StateStore:
    """Create a loaded, empty state store."""
    store = StateStore(state_path)
    store.load()
    return store
