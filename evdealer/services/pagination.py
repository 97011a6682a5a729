"""Page parameter normalization shared by the listing operations."""

from typing import Optional

from evdealer.core.config import Settings, get_settings


def normalize_page(
    page: int, page_size: int, settings: Optional[Settings] = None
) -> tuple[int, int]:
    """
    Clamp paging input instead of rejecting it.

    A page below 1 becomes 1; a page size outside 1..max_page_size falls
    back to the default page size.
    """
    settings = settings or get_settings()
    if page < 1:
        page = 1
    if page_size < 1 or page_size > settings.max_page_size:
        page_size = settings.default_page_size
    return page, page_size
