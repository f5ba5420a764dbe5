"""A single page of a paginated collection."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from restguard.http.models import ApiRequest, ApiResponse
from restguard.pagination.link_header import LinkHeaderParser

NAVIGATION_RELATIONS = ("current", "first", "prev", "next", "last")


@dataclass(frozen=True)
class PageCursor:
    """Opaque pointer to another page, taken from a Link relation."""

    url: str
    relation: str


@dataclass
class PaginatedResult:
    """Items of one page plus the cursors to its neighbours.

    Attributes:
        items: Items decoded from this page's body
        url: URL this page was fetched from
        links: Link relations of the response, relation -> URL
        response: The response the page was built from
        request: The request that fetched it, reused to follow cursors
    """

    items: List[Any]
    url: str = ""
    links: Dict[str, str] = field(default_factory=dict)
    response: Optional[ApiResponse] = field(default=None, repr=False)
    request: Optional[ApiRequest] = field(default=None, repr=False)

    _parser = LinkHeaderParser()

    @classmethod
    def from_response(
        cls,
        response: ApiResponse,
        items: List[Any],
        request: Optional[ApiRequest] = None,
    ) -> "PaginatedResult":
        return cls(
            items=items,
            url=response.url,
            links=response.links,
            response=response,
            request=request,
        )

    def cursor(self, relation: str) -> Optional[PageCursor]:
        url = self.links.get(relation)
        return PageCursor(url, relation) if url else None

    @property
    def cursors(self) -> Dict[str, PageCursor]:
        return {rel: PageCursor(url, rel) for rel, url in self.links.items()}

    @property
    def next_url(self) -> Optional[str]:
        return self.links.get("next")

    @property
    def prev_url(self) -> Optional[str]:
        return self.links.get("prev")

    @property
    def first_url(self) -> Optional[str]:
        return self.links.get("first")

    @property
    def last_url(self) -> Optional[str]:
        return self.links.get("last")

    @property
    def current_url(self) -> Optional[str]:
        return self.links.get("current")

    @property
    def has_next(self) -> bool:
        return self.next_url is not None

    @property
    def has_prev(self) -> bool:
        return self.prev_url is not None

    @property
    def current_page(self) -> int:
        page = self._parser.extract_page_number(self.current_url or self.url)
        return page if page is not None else 1

    @property
    def total_pages(self) -> Optional[int]:
        return self._parser.extract_page_number(self.last_url)

    @property
    def per_page(self) -> Optional[int]:
        for url in [*self.links.values(), self.url]:
            per_page = self._parser.extract_per_page(url)
            if per_page is not None:
                return per_page
        return None

    @property
    def is_first_page(self) -> bool:
        return self.current_page == 1

    @property
    def is_last_page(self) -> bool:
        total = self.total_pages
        if total is None:
            return not self.has_next
        return self.current_page == total

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def summary(self) -> str:
        total = self.total_pages
        if total is not None:
            return f"Page {self.current_page} of {total} ({self.count} items)"
        return f"Page {self.current_page} ({self.count} items)"

    def navigation_urls(self) -> Dict[str, str]:
        return {rel: self.links[rel] for rel in NAVIGATION_RELATIONS if rel in self.links}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.items,
            "pagination": {
                "current_page": self.current_page,
                "total_pages": self.total_pages,
                "per_page": self.per_page,
                "count": self.count,
                "has_next": self.has_next,
                "has_prev": self.has_prev,
                "is_first_page": self.is_first_page,
                "is_last_page": self.is_last_page,
                "navigation_urls": self.navigation_urls(),
            },
        }

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
