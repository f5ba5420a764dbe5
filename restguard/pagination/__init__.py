"""Link-header pagination."""

from restguard.pagination.engine import DEFAULT_MAX_PAGES, Paginator
from restguard.pagination.link_header import LinkHeaderParser
from restguard.pagination.result import PageCursor, PaginatedResult

__all__ = [
    "DEFAULT_MAX_PAGES",
    "LinkHeaderParser",
    "PageCursor",
    "PaginatedResult",
    "Paginator",
]
