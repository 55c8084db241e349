"""
Rate-limited, paginated bulk fetcher.

Requests pages one at a time (never in parallel) with a fixed delay between
them so a large backfill stays under ClickUp's ~100 requests/minute.

Stops when:
  - the remote reports no more pages,
  - max_pages pages have been fetched (truncated=True if more remained);
    request max_pages + 1 is never issued,
  - a page fails (truncated=True, error set; no retry here: the next
    scheduled sync is the retry),
  - the cancellation token is signalled (SyncCancelledError at the page
    boundary).
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from lighthouse.sync.session import CancellationToken

logger = logging.getLogger(__name__)

PageFn = Callable[[int], Awaitable[Tuple[List[Dict[str, Any]], bool]]]
ProgressFn = Callable[[int, int], None]

DEFAULT_PROGRESS_CAP = 90


@dataclass
class FetchResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    pages_fetched: int = 0
    truncated: bool = False
    error: Optional[BaseException] = None


def page_percent(pages: int, max_pages: int, cap: int = DEFAULT_PROGRESS_CAP) -> int:
    """Percent complete for the progress bar, capped below 100."""
    if max_pages <= 0:
        return cap
    return min(cap, int(pages * 100 / max_pages))


async def fetch_all(
    fetch_page: PageFn,
    max_pages: int,
    inter_page_delay_ms: int,
    token: CancellationToken,
    on_progress: Optional[ProgressFn] = None,
    progress_cap: int = DEFAULT_PROGRESS_CAP,
) -> FetchResult:
    """
    Fetch pages 0..max_pages-1 sequentially.

    Args:
        fetch_page: async page_number → (records, has_more). Usually a
            functools.partial over ClickUpClient.list_tasks_page.
        max_pages: Safety bound against unbounded backfills.
        inter_page_delay_ms: Sleep between consecutive pages.
        token: Checked before every page request.
        on_progress: Called once per page with (pages_fetched, percent).

    Returns:
        FetchResult with every record collected so far.

    Raises:
        SyncCancelledError: if the token is cancelled at a page boundary.
    """
    result = FetchResult()
    has_more = True

    while has_more and result.pages_fetched < max_pages:
        token.raise_if_cancelled()
        page = result.pages_fetched
        try:
            records, has_more = await fetch_page(page)
        except Exception as exc:
            logger.warning("Page %d failed, stopping fetch early: %s", page, exc)
            result.truncated = True
            result.error = exc
            return result

        result.records.extend(records)
        result.pages_fetched += 1

        if on_progress:
            on_progress(result.pages_fetched, page_percent(result.pages_fetched, max_pages, progress_cap))

        if has_more and result.pages_fetched < max_pages and inter_page_delay_ms > 0:
            await asyncio.sleep(inter_page_delay_ms / 1000)

    if has_more:
        logger.warning(
            "Fetch stopped at the %d-page limit with more pages remaining", max_pages
        )
        result.truncated = True

    logger.info(
        "Fetched %d records in %d pages%s",
        len(result.records),
        result.pages_fetched,
        " (truncated)" if result.truncated else "",
    )
    return result
