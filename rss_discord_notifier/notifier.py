"""
Protocol definition for notification backends.

Defines the common interface that all notifiers must implement.
"""

from typing import Protocol, runtime_checkable

from rss_discord_notifier.models import Article


class DeliveryError(Exception):
    """Raised when an article could not be delivered after all retries."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


@runtime_checkable
class Notifier(Protocol):
    """
    Protocol defining the interface for notification backends.

    The runner only depends on this interface, so any backend that can
    post one article to one endpoint can be plugged in.
    """

    async def send_article(self, article: Article, webhook_url: str) -> None:
        """
        Deliver one article to an endpoint.

        Parameters
        ----------
        article : Article
            The article to announce.
        webhook_url : str
            Endpoint to deliver to.

        Raises
        ------
        DeliveryError
            If the article could not be delivered.
        """
        ...

    async def close(self) -> None:
        """Close the notifier and release any resources."""
        ...
