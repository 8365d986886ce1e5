"""Shared offset/limit paging for feed, likes and comments."""


def clamp_page(offset: int | None, limit: int | None, default_limit: int, max_limit: int) -> tuple[int, int]:
    """Normalize caller-supplied offset/limit: offset >= 0, 1 <= limit <= max_limit.

    The store never returns totals, so callers stop on a short page.
    """
    off = max(0, int(offset or 0))
    lim = int(limit) if limit is not None else default_limit
    return off, max(1, min(max_limit, lim))
