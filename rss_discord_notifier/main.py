"""
Main entry point for RSS Discord Notifier.

Runs one fetch-filter-notify-persist cycle and exits.
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

import coloredlogs
import yaml

from rss_discord_notifier import __version__
from rss_discord_notifier.config import AppConfig, LogFormat, LogLevel, load_config
from rss_discord_notifier.discord import DiscordNotifier
from rss_discord_notifier.fetcher import FeedFetcher
from rss_discord_notifier.filters import select_articles
from rss_discord_notifier.models import Article
from rss_discord_notifier.notifier import DeliveryError, Notifier
from rss_discord_notifier.state import StateError, StateStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "configs/feeds.yaml"

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

# Attributes every LogRecord has; anything else came from ``extra``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


def redact_proxy_url(proxy_url: str) -> str:
    """
    Redact credentials from a proxy URL for safe logging.

    Parameters
    ----------
    proxy_url : str
        The proxy URL potentially containing credentials.

    Returns
    -------
    str
        The proxy URL with password redacted.
    """
    try:
        parsed = urlparse(proxy_url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:****@{netloc}"
            return f"{parsed.scheme}://{netloc}{parsed.path}"
        return proxy_url
    except ValueError:
        return "<proxy url>"


@dataclass
class RunSummary:
    """Outcome of one notification cycle."""

    feeds_checked: int = 0
    articles_fetched: int = 0
    new_articles: int = 0
    notified: int = 0
    failed: int = 0
    duration: float = 0.0


class NotificationRunner:
    """
    Runs one notification cycle.

    Coordinates feed fetching, filtering, delivery and state persistence.
    Components can be injected before :meth:`run_cycle`; missing ones are
    built from the configuration by :meth:`initialize`.
    """

    def __init__(self, config: AppConfig):
        """
        Initialize the runner.

        Parameters
        ----------
        config : AppConfig
            Validated application configuration.
        """
        self.config = config
        self.state: StateStore | None = None
        self.fetcher: FeedFetcher | None = None
        self.notifier: Notifier | None = None

    def initialize(self) -> None:
        """Create the components that were not injected."""
        proxy_url = self.config.defaults.proxy
        if proxy_url:
            logger.info("Using proxy: %s", redact_proxy_url(proxy_url))

        if self.state is None:
            self.state = StateStore(
                self.config.state.path,
                max_articles_per_feed=self.config.state.max_articles_per_feed,
                cleanup_days=self.config.state.cleanup_days,
            )

        if self.fetcher is None:
            self.fetcher = FeedFetcher(
                timeout=self.config.notification.timeout_seconds,
                max_retries=self.config.defaults.max_retries,
                user_agent=self.config.defaults.user_agent,
                proxy_url=proxy_url,
            )

        if self.notifier is None:
            self.notifier = DiscordNotifier(
                max_retries=self.config.discord.max_retries,
                retry_delay=self.config.discord.retry_delay,
                proxy_url=proxy_url,
            )

    async def run(self) -> RunSummary:
        """Initialize components, run one cycle and release resources."""
        logger.info(
            "Starting RSS Discord Notifier %s with %d enabled feed(s)",
            __version__,
            len(self.config.enabled_feeds()),
        )
        self.initialize()
        try:
            return await self.run_cycle()
        finally:
            await self.close()

    async def run_cycle(self) -> RunSummary:
        """
        Fetch, filter, notify and persist.

        The state is saved even if the cycle is cancelled part-way, so
        articles delivered so far stay recorded.

        Returns
        -------
        RunSummary
            Counters describing the run.

        Raises
        ------
        StateError
            If the state file cannot be loaded or saved.
        """
        if not self.state or not self.fetcher or not self.notifier:
            raise RuntimeError("Components not initialized")

        start = time.monotonic()

        self.state.load()
        is_first_run = self.state.is_first_run()
        if is_first_run:
            logger.info("First run detected, only the most recent articles will be sent")

        feeds = self.config.enabled_feeds()
        summary = RunSummary(feeds_checked=len(feeds))

        try:
            articles = await self.fetcher.fetch_all(feeds)
            summary.articles_fetched = len(articles)

            selected = select_articles(
                articles,
                self.state,
                is_first_run=is_first_run,
                max_articles_per_run=self.config.notification.max_articles_per_run,
                first_run_max_articles=self.config.notification.first_run_max_articles,
            )
            summary.new_articles = len(selected)

            await self._deliver(selected, summary)
        finally:
            summary.duration = time.monotonic() - start
            self.state.update_statistics(summary.feeds_checked, summary.duration)
            self.state.save()

        logger.info(
            "Run complete: %d feed(s) checked, %d article(s) fetched, %d new, "
            "%d notified, %d failed in %.2fs",
            summary.feeds_checked,
            summary.articles_fetched,
            summary.new_articles,
            summary.notified,
            summary.failed,
            summary.duration,
        )
        return summary

    async def _deliver(self, articles: list[Article], summary: RunSummary) -> None:
        """
        Send articles one by one, oldest first.

        Only successfully delivered articles are marked as notified; the
        others will be retried on the next run.
        """
        if not articles:
            logger.info("No new articles to notify")
            return

        rate_limit = self.config.notification.rate_limit_ms / 1000
        logger.info("Sending %d notification(s)", len(articles))

        for i, article in enumerate(articles):
            webhook_url = article.webhook_url or self.config.discord.webhook_url

            try:
                await self.notifier.send_article(article, webhook_url)
            except DeliveryError as e:
                summary.failed += 1
                logger.error(
                    "Failed to notify '%s' from '%s': %s",
                    article.title[:50],
                    article.feed_name,
                    e,
                    extra={"title": article.title, "feed": article.feed_name, "error": str(e)},
                )
            else:
                self.state.mark_as_notified(article)
                summary.notified += 1

            if i < len(articles) - 1:
                await asyncio.sleep(rate_limit)

    async def close(self) -> None:
        """Release network resources."""
        if self.fetcher:
            await self.fetcher.close()
        if self.notifier:
            await self.notifier.close()


async def check_feeds(config: AppConfig) -> int:
    """
    Fetch the title of every enabled feed without sending anything.

    Parameters
    ----------
    config : AppConfig
        Validated application configuration.

    Returns
    -------
    int
        Exit code, non-zero if any feed could not be fetched.
    """
    failures = 0
    async with FeedFetcher(
        timeout=config.notification.timeout_seconds,
        max_retries=config.defaults.max_retries,
        user_agent=config.defaults.user_agent,
        proxy_url=config.defaults.proxy,
    ) as fetcher:
        for feed in config.enabled_feeds():
            try:
                title, description = await fetcher.get_feed_info(feed.url)
            except Exception as e:
                failures += 1
                logger.error("Feed '%s' (%s) is unreachable: %s", feed.name, feed.url, e)
                continue
            logger.info("Feed '%s' OK: %s - %s", feed.name, title, description[:80])

    return EXIT_FAILURE if failures else EXIT_SUCCESS


class JSONFormatter(logging.Formatter):
    """Format records as one JSON object per line, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def setup_logging(
    level: LogLevel | str = LogLevel.INFO,
    log_format: LogFormat | str = LogFormat.TEXT,
) -> None:
    """
    Configure application logging.

    Parameters
    ----------
    level : LogLevel | str
        Minimum level; unknown names mean INFO.
    log_format : LogFormat | str
        ``text`` for colored output, ``json`` for structured lines.
    """
    log_level = LogLevel.parse(level).to_logging()

    if LogFormat.parse(log_format) is LogFormat.JSON:
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
        root.setLevel(log_level)
    else:
        coloredlogs.install(
            level=log_level,
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    # Reduce noise from third-party libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Announce new RSS/Atom articles on Discord",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        default=os.environ.get("CONFIG_FILE_PATH") or DEFAULT_CONFIG_PATH,
        help="Path to configuration file",
    )
    parser.add_argument(
        "-s",
        "--state",
        default=None,
        help="Path to state file (overrides the configuration)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--check-feeds",
        action="store_true",
        help="Only check that every enabled feed can be fetched",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point.

    Returns
    -------
    int
        0 on a completed run, 1 on fatal errors, 130 when interrupted.
    """
    args = parse_args(argv)

    setup_logging(LogLevel.DEBUG if args.verbose else LogLevel.INFO)

    config_path = Path(args.config)
    try:
        config = load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Failed to load configuration from %s: %s", config_path, e)
        return EXIT_FAILURE

    if args.state:
        config.state.path = args.state

    setup_logging(
        LogLevel.DEBUG if args.verbose else config.logging.level,
        config.logging.format,
    )

    if args.check_feeds:
        return asyncio.run(check_feeds(config))

    runner = NotificationRunner(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(runner.run())

    def signal_handler():
        logger.info("Received shutdown signal")
        task.cancel()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows event loops have no signal support
            pass

    try:
        loop.run_until_complete(task)
    except asyncio.CancelledError:
        logger.warning("Run interrupted, progress so far has been saved")
        return EXIT_INTERRUPTED
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except StateError as e:
        logger.error("State file error: %s", e)
        return EXIT_FAILURE
    except Exception as e:
        logger.exception("Run failed: %s", e)
        return EXIT_FAILURE
    finally:
        loop.close()
        asyncio.set_event_loop(None)

    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
