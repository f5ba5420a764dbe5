"""RFC 5988 Link header parsing.

Paginated APIs return their cursors in a Link header:

    Link: <https://canvas.example.edu/api/v1/courses?page=2&per_page=50>; rel="next",
          <https://canvas.example.edu/api/v1/courses?page=9&per_page=50>; rel="last"

Parsing is lenient: entries that cannot be understood are skipped rather
than raising, because a broken cursor should end pagination, not the call.
"""

import re
from typing import Dict, List, Optional

import httpx

# A URL in angle brackets followed by its parameters, up to the next entry
_ENTRY = re.compile(r"<\s*([^>]*?)\s*>([^<]*)")
_REL = re.compile(
    r"(?:^|;)\s*rel\s*=\s*(?:\"([^\"]*)\"|'([^']*)'|([^;,\s]+))",
    re.IGNORECASE,
)


class LinkHeaderParser:
    """Parse Link headers into a relation -> URL mapping.

    Usage:
        parser = LinkHeaderParser()
        links = parser.parse(response.headers.get("link", ""))
        next_url = links.get("next")
    """

    def parse(self, header: Optional[str]) -> Dict[str, str]:
        """Parse a Link header.

        Args:
            header: Raw header value; None or empty yields an empty mapping

        Returns:
            Relation names (lower-cased) mapped to URLs. An entry carrying
            several space-separated relations ("next last") is registered
            under each of them; the first entry for a relation wins.
        """
        links: Dict[str, str] = {}
        if not header:
            return links

        for match in _ENTRY.finditer(header):
            url = match.group(1).strip()
            if not url:
                continue
            rel_match = _REL.search(match.group(2))
            if rel_match is None:
                continue
            rel_value = next(g for g in rel_match.groups() if g is not None)
            for rel in rel_value.split():
                links.setdefault(rel.lower(), url)
        return links

    def extract_relation(self, header: Optional[str], relation: str) -> Optional[str]:
        return self.parse(header).get(relation.lower())

    def has_relation(self, header: Optional[str], relation: str) -> bool:
        return relation.lower() in self.parse(header)

    def get_relations(self, header: Optional[str]) -> List[str]:
        return list(self.parse(header))

    @staticmethod
    def _int_param(url: Optional[str], name: str) -> Optional[int]:
        if not url:
            return None
        try:
            value = httpx.URL(url).params.get(name)
        except (httpx.InvalidURL, TypeError, ValueError):
            return None
        if value is None or not value.isdigit():
            return None
        return int(value)

    def extract_page_number(self, url: Optional[str]) -> Optional[int]:
        """Return the numeric ``page`` query parameter, if there is one.

        Opaque cursors (``page=bookmark:...``) yield None.
        """
        return self._int_param(url, "page")

    def extract_per_page(self, url: Optional[str]) -> Optional[int]:
        return self._int_param(url, "per_page")
