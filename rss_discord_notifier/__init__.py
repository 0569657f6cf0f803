"""
RSS Discord Notifier - Announce new RSS articles on Discord.

A batch job that polls RSS/Atom feeds, picks the articles that have not
been announced yet and posts them to Discord webhooks, remembering what
was sent between runs.
"""

__version__ = "1.0.0"
