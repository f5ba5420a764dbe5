"""Contextual header injection.

Outermost interceptor: attaches the bearer credential, configured default
headers and the masquerade (act-as-user) parameter before anything else
sees the request, so logging records exactly what goes on the wire.
"""

from typing import Dict, Optional

import httpx

from restguard.http.models import ApiRequest, ApiResponse
from restguard.middleware.base import Handler, Middleware


class ContextHeadersMiddleware(Middleware):
    """Inject authorization, default headers and masquerade context.

    Args:
        default_headers: Headers added to every request unless the request
            already sets them
        masquerade_user_id: Act-as-user id applied to every request
        masquerade_param: Query parameter carrying the masquerade id
    """

    name = "context-headers"

    def __init__(
        self,
        default_headers: Optional[Dict[str, str]] = None,
        masquerade_user_id: Optional[str] = None,
        masquerade_param: str = "as_user_id",
    ):
        self.default_headers = dict(default_headers or {})
        self.masquerade_user_id = masquerade_user_id
        self.masquerade_param = masquerade_param

    def _with_masquerade(self, request: ApiRequest, user_id: str) -> ApiRequest:
        if request.is_absolute:
            # Cursor URLs usually echo the parameter back already
            url = httpx.URL(request.path)
            if self.masquerade_param in url.params:
                return request
            return request.copy_with(
                path=str(url.copy_merge_params({self.masquerade_param: user_id}))
            )
        query = request.query_items()
        if any(key == self.masquerade_param for key, _ in query):
            return request
        query.append((self.masquerade_param, str(user_id)))
        return request.copy_with(query=query)

    async def handle(self, request: ApiRequest, call_next: Handler) -> ApiResponse:
        headers = dict(request.headers)
        lowered = {name.lower() for name in headers}
        for name, value in self.default_headers.items():
            if name.lower() not in lowered:
                headers[name] = value

        credential = request.extensions.get("credential")
        if credential and "authorization" not in lowered:
            headers["Authorization"] = f"Bearer {credential}"

        request = request.copy_with(headers=headers)

        user_id = request.options.masquerade_as or self.masquerade_user_id
        if user_id:
            request = self._with_masquerade(request, user_id)

        return await call_next(request)
