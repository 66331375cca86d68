"""Cursor-based pagination.

Drains a listing endpoint page by page into one result, stopping at the
caller's cap. When the cap cuts the listing short, the last page's cursor
is returned so the caller can resume from exactly that point.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from ossclient.errors import ValidationError

logger = logging.getLogger(__name__)

# Hard page-size limit imposed by the service
MAX_PAGE_SIZE = 1000

# Opaque resumption point: a token, or a tuple of markers for listings
# that resume from more than one value
Cursor = Union[str, tuple[str, ...]]


@dataclass
class Page:
    """One page as returned by a listing call."""

    items: list[Any]
    prefixes: list[Any] = field(default_factory=list)
    is_truncated: bool = False
    next_cursor: Optional[Cursor] = None


@dataclass
class PageResult:
    """Items and grouped prefixes merged across pages.

    ``cursor`` is None once the listing is exhausted.
    """

    items: list[Any] = field(default_factory=list)
    prefixes: list[Any] = field(default_factory=list)
    cursor: Optional[Cursor] = None


# list_call(cursor, page_size) -> Page
ListCall = Callable[[Optional[Cursor], int], Awaitable[Page]]


async def paginate(
    list_call: ListCall,
    max_items: int,
    cursor: Optional[Cursor] = None,
    page_limit: int = MAX_PAGE_SIZE,
) -> PageResult:
    """Call ``list_call`` until ``max_items`` entries are collected or the listing ends.

    Items and grouped prefixes both count toward ``max_items``. The loop
    ends when:
    - the cap is reached,
    - a page is not truncated,
    - a page carries no next cursor, whatever its truncation flag says,
    - a page holds fewer entries than were requested.

    Args:
        list_call: Coroutine function taking (cursor, page_size).
        max_items: Maximum number of entries to return.
        cursor: Cursor to resume from, or None to start at the beginning.
        page_limit: Largest page size to request.

    Returns:
        PageResult with the collected entries and a resumption cursor if
        the listing was cut short.

    Raises:
        ValidationError: If max_items or page_limit is below 1.
    """
    if max_items < 1:
        raise ValidationError("max_items must be at least 1")
    if page_limit < 1:
        raise ValidationError("page_limit must be at least 1")

    result = PageResult()
    remaining = max_items
    next_cursor = cursor

    while remaining > 0:
        page_size = min(remaining, page_limit)
        page = await list_call(next_cursor, page_size)

        received = len(page.items) + len(page.prefixes)
        if received > page_size:
            logger.warning(
                "Listing returned %d entries for a page of %d; extra entries dropped",
                received,
                page_size,
            )

        items = page.items[:remaining]
        remaining -= len(items)
        prefixes = page.prefixes[:remaining]
        remaining -= len(prefixes)
        result.items.extend(items)
        result.prefixes.extend(prefixes)

        next_cursor = page.next_cursor if page.is_truncated else None
        logger.debug(
            "Page of %d entries, truncated=%s, %d still wanted",
            received,
            page.is_truncated,
            remaining,
        )

        if not next_cursor:
            break
        if received < page_size:
            break

    result.cursor = next_cursor or None
    return result
