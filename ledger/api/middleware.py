"""
GET response caching.

Successful GET responses under the API prefix are cached per user and
per path + query string. Writes invalidate through the engines, so this
middleware only ever reads and fills the cache. A body is stored only if no
write invalidated the user while it was being computed.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ledger.services.cache import ResponseCache


class ResponseCacheMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, cache: ResponseCache, prefix: str = "/api"):
        super().__init__(app)
        self._cache = cache
        self._prefix = prefix

    async def dispatch(self, request: Request, call_next):
        user_id = (request.headers.get("x-user-id") or "").strip()
        if (
            request.method != "GET"
            or not user_id
            or not request.url.path.startswith(self._prefix)
        ):
            return await call_next(request)

        key = request.url.path
        if request.url.query:
            key = f"{key}?{request.url.query}"

        generation = self._cache.generation(user_id)
        cached = self._cache.get(user_id, key)
        if cached is not None:
            body, media_type = cached
            return Response(
                content=body,
                status_code=200,
                media_type=media_type,
                headers={"X-Cache": "HIT"},
            )

        response = await call_next(request)
        if response.status_code != 200:
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        media_type = response.headers.get("content-type")
        self._cache.set(user_id, key, (body, media_type), generation=generation)

        headers = dict(response.headers)
        headers["X-Cache"] = "MISS"
        return Response(
            content=body,
            status_code=response.status_code,
            headers=headers,
        )
