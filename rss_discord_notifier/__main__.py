"""Allow running the notifier with ``python -m rss_discord_notifier``."""

import sys

from rss_discord_notifier.main import main

if __name__ == "__main__":
    sys.exit(main())
