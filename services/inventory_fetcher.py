"""
Per-location inventory count ingestion with a hard page cap.
"""
from typing import List
import logging

from schemas import RawCount
from services.errors import DataShapeError
from settings import MAX_INVENTORY_PAGES

logger = logging.getLogger(__name__)


class LocationInventoryFetcher:
    """Pages batch-retrieve-inventory-counts for a single location.

    Stops after `max_pages` pages even if the API still returns a cursor;
    the remaining pages are left for the next run and no error is raised.
    """

    def __init__(self, client, max_pages: int = MAX_INVENTORY_PAGES):
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self.client = client
        self.max_pages = max_pages
        self.pages_fetched = 0
        self.truncated = False

    async def fetch(self, location_id: str) -> List[RawCount]:
        counts: List[RawCount] = []
        self.pages_fetched = 0
        self.truncated = False
        cursor = None

        while True:
            result = await self.client.batch_retrieve_inventory_counts([location_id], cursor)
            self.pages_fetched += 1
            cursor = result.cursor
            logger.info(
                "Fetched %d counts for location %s (page %d), cursor=%s",
                len(result.items), location_id, self.pages_fetched, cursor,
            )
            for payload in result.items:
                try:
                    counts.append(RawCount.from_api(payload))
                except DataShapeError as exc:
                    logger.debug("Skipping inventory count at %s: %s", location_id, exc)

            if not cursor:
                break
            if self.pages_fetched >= self.max_pages:
                self.truncated = True
                logger.warning(
                    "Location %s hit the %d page cap; remaining pages skipped this run",
                    location_id, self.max_pages,
                )
                break

        return counts
