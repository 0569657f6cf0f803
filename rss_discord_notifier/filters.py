"""
Selection of the articles to announce.

Drops invalid and already-notified articles, applies the first-run and
per-run caps and orders the result for delivery.
"""

import logging

from rss_discord_notifier.models import Article
from rss_discord_notifier.state import StateStore

logger = logging.getLogger(__name__)


def filter_new_articles(articles: list[Article], state: StateStore) -> list[Article]:
    """
    Keep valid articles that have not been notified yet.

    An article listed more than once in the batch is kept only once.

    Parameters
    ----------
    articles : list[Article]
        Fetched articles.
    state : StateStore
        Store answering "already notified?" queries.

    Returns
    -------
    list[Article]
        New articles, in input order.
    """
    new_articles = []
    seen: set[tuple[str, str]] = set()

    for article in articles:
        if not article.is_valid():
            logger.warning(
                "Skipping invalid article (id=%r, title=%r)", article.id, article.title
            )
            continue

        if state.is_article_notified(article.feed_url, article.id):
            logger.debug(
                "Skipping already notified article '%s' from '%s'",
                article.title[:50],
                article.feed_name,
            )
            continue

        key = (article.feed_url, article.id)
        if key in seen:
            logger.debug(
                "Skipping duplicate article '%s' from '%s'",
                article.title[:50],
                article.feed_name,
            )
            continue
        seen.add(key)

        new_articles.append(article)

    return new_articles


def limit_articles(articles: list[Article], limit: int) -> list[Article]:
    """
    Keep the ``limit`` most recently published articles.

    Returns the input unchanged when it is within the limit, otherwise
    the newest articles, newest first.
    """
    if len(articles) <= limit:
        return articles
    newest_first = sorted(articles, key=lambda a: a.published_at, reverse=True)
    return newest_first[:limit]


def sort_by_published(articles: list[Article]) -> list[Article]:
    """Return the articles oldest first (stable for equal timestamps)."""
    return sorted(articles, key=lambda a: a.published_at)


def select_articles(
    articles: list[Article],
    state: StateStore,
    is_first_run: bool,
    max_articles_per_run: int,
    first_run_max_articles: int,
) -> list[Article]:
    """
    Pick the articles to deliver in this run, in delivery order.

    Parameters
    ----------
    articles : list[Article]
        Everything fetched in this run.
    state : StateStore
        Notification history.
    is_first_run : bool
        Whether the store was empty when loaded.
    max_articles_per_run : int
        Cap applied on every run.
    first_run_max_articles : int
        Tighter cap applied on the first run.

    Returns
    -------
    list[Article]
        Articles to announce, oldest first.
    """
    new_articles = filter_new_articles(articles, state)
    logger.info("Found %d new article(s)", len(new_articles))

    if is_first_run and len(new_articles) > first_run_max_articles:
        logger.info(
            "First run: limiting articles from %d to %d",
            len(new_articles),
            first_run_max_articles,
        )
        new_articles = limit_articles(new_articles, first_run_max_articles)

    if len(new_articles) > max_articles_per_run:
        logger.warning(
            "%d new articles exceed the per-run maximum of %d, keeping the most recent",
            len(new_articles),
            max_articles_per_run,
        )
        new_articles = limit_articles(new_articles, max_articles_per_run)

    return sort_by_published(new_articles)
