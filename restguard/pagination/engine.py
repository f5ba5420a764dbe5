"""Pagination engine: walks Link-header cursors through the executor.

Every page fetch goes through the executor's full middleware chain, so
pages are rate limited, retried and logged exactly like any other call.
Traversal ends when a page has no ``next`` relation; empty pages with a
``next`` are followed, since some APIs filter after paginating.
"""

from typing import Any, AsyncIterator, List, Optional, Protocol

import httpx

from restguard.core.logging import get_log_context, get_logger
from restguard.http.models import ApiRequest, ApiResponse
from restguard.pagination.result import PaginatedResult

logger = get_logger(__name__)

DEFAULT_MAX_PAGES = 10000


class RequestSender(Protocol):
    async def execute(self, request: ApiRequest) -> ApiResponse: ...


def normalize_url(url: str) -> str:
    try:
        return str(httpx.URL(url))
    except (httpx.InvalidURL, TypeError, ValueError):
        return url


class Paginator:
    """Fetches pages of a collection and follows their cursors.

    Args:
        executor: Anything with ``async execute(ApiRequest) -> ApiResponse``
        max_pages: Hard cap on pages fetched by one traversal
        items_key: Key holding the item list when the body is a JSON object
        per_page: Page size requested on the first page when the caller
            did not ask for one

    Usage:
        paginator = Paginator(executor)
        async for course in paginator.all(ApiRequest("GET", "/courses")):
            ...
    """

    def __init__(
        self,
        executor: RequestSender,
        max_pages: int = DEFAULT_MAX_PAGES,
        items_key: Optional[str] = None,
        per_page: Optional[int] = None,
    ):
        self.executor = executor
        self.max_pages = max_pages
        self.items_key = items_key
        self.per_page = per_page

    def extract_items(self, response: ApiResponse, items_key: Optional[str] = None) -> List[Any]:
        """Decode the page's items from its JSON body.

        A JSON array is the item list. A JSON object is unwrapped through
        ``items_key``; anything else yields no items.
        """
        key = items_key or self.items_key
        try:
            data = response.json()
        except ValueError:
            logger.warning(f"Page body from {response.url} is not JSON, treating as empty")
            return []
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and key:
            items = data.get(key)
            if isinstance(items, list):
                return items
        return []

    def _resolve_cursor(self, result: PaginatedResult, relation: str) -> Optional[str]:
        """Return the absolute URL for ``relation``, or None if unusable."""
        link = result.links.get(relation)
        if not link:
            return None
        try:
            url = httpx.URL(link)
            if not url.is_absolute_url and result.url:
                url = httpx.URL(result.url).join(link)
        except (httpx.InvalidURL, TypeError, ValueError):
            logger.debug(f"Ignoring malformed {relation!r} cursor: {link!r}")
            return None
        if url.scheme not in ("http", "https") or not url.host:
            logger.debug(f"Ignoring malformed {relation!r} cursor: {link!r}")
            return None
        return str(url)

    def _with_page_size(self, request: ApiRequest) -> ApiRequest:
        if self.per_page is None or request.is_absolute:
            return request
        query = request.query_items()
        if any(key == "per_page" for key, _ in query):
            return request
        query.append(("per_page", str(self.per_page)))
        return request.copy_with(query=query)

    async def _fetch(self, request: ApiRequest, items_key: Optional[str] = None) -> PaginatedResult:
        response = await self.executor.execute(request)
        items = self.extract_items(response, items_key)
        return PaginatedResult.from_response(response, items, request=request)

    async def _follow(
        self,
        result: PaginatedResult,
        relation: str,
        items_key: Optional[str] = None,
    ) -> Optional[PaginatedResult]:
        url = self._resolve_cursor(result, relation)
        if url is None:
            return None
        template = result.request or ApiRequest("GET", url)
        # The cursor URL already carries the query, so drop the original one
        request = template.copy_with(
            method="GET",
            path=url,
            query=None,
            json=None,
            data=None,
            content=None,
            extensions={},
        )
        return await self._fetch(request, items_key)

    async def first_page(self, request: ApiRequest, items_key: Optional[str] = None) -> PaginatedResult:
        """Fetch the first page of the collection addressed by ``request``."""
        return await self._fetch(self._with_page_size(request), items_key)

    async def next_page(
        self, result: PaginatedResult, items_key: Optional[str] = None
    ) -> Optional[PaginatedResult]:
        """Fetch the page after ``result``.

        Returns None when there is no usable ``next`` cursor, or when the
        cursor points back at ``result`` itself.
        """
        url = self._resolve_cursor(result, "next")
        if url is None:
            return None
        if result.url and normalize_url(url) == normalize_url(result.url):
            logger.warning(f"Next cursor points at the current page ({url}), stopping")
            return None
        return await self._follow(result, "next", items_key)

    async def prev_page(
        self, result: PaginatedResult, items_key: Optional[str] = None
    ) -> Optional[PaginatedResult]:
        return await self._follow(result, "prev", items_key)

    async def first_of(
        self, result: PaginatedResult, items_key: Optional[str] = None
    ) -> Optional[PaginatedResult]:
        return await self._follow(result, "first", items_key)

    async def last_of(
        self, result: PaginatedResult, items_key: Optional[str] = None
    ) -> Optional[PaginatedResult]:
        return await self._follow(result, "last", items_key)

    async def pages(
        self, request: ApiRequest, items_key: Optional[str] = None
    ) -> AsyncIterator[PaginatedResult]:
        """Yield pages lazily, fetching each one only when asked for.

        Stops on a missing ``next``, on a ``next`` that revisits a page, or
        after ``max_pages`` pages.
        """
        page = await self.first_page(request, items_key)
        fetched = 1
        visited = {normalize_url(page.url)}
        yield page

        while True:
            url = self._resolve_cursor(page, "next")
            if url is None:
                return
            if normalize_url(url) in visited:
                logger.warning(
                    f"Next cursor revisits {url}, ending pagination after {fetched} pages",
                    extra=get_log_context(path=request.path),
                )
                return
            if fetched >= self.max_pages:
                logger.warning(
                    f"Pagination stopped at the {self.max_pages} page limit",
                    extra=get_log_context(path=request.path),
                )
                return

            page = await self._follow(page, "next", items_key)
            fetched += 1
            visited.add(normalize_url(url))
            visited.add(normalize_url(page.url))
            yield page

    async def all(self, request: ApiRequest, items_key: Optional[str] = None) -> AsyncIterator[Any]:
        """Yield every item of every page, in server order."""
        async for page in self.pages(request, items_key):
            for item in page.items:
                yield item

    async def collect_all(self, request: ApiRequest, items_key: Optional[str] = None) -> List[Any]:
        """Fetch the whole collection into a list."""
        return [item async for item in self.all(request, items_key)]
