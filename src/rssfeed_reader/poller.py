"""Background polling loop for the RSS feed reader."""

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rssfeed_reader.sync import FeedSync

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 900  # 15 minutes


async def poll_sources_once(sync: "FeedSync") -> int:
    """Refresh every source in the background. Returns the number polled."""
    count = len(sync.sources)
    await sync.refresh_all(background=True)
    return count


async def start_polling(sync: "FeedSync", interval: float = DEFAULT_POLL_INTERVAL) -> None:
    """Run the polling loop until cancelled.

    The first poll happens one interval after start.
    """
    logger.info("Poller started (interval: %gs)", interval)

    while True:
        await asyncio.sleep(interval)
        try:
            polled = await poll_sources_once(sync)
            logger.info("Poll cycle complete: %d sources refreshed", polled)
        except Exception as e:
            logger.error("Poll cycle failed: %s", e)
