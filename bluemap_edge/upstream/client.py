import logging
from typing import AsyncIterable, Mapping, Optional, Union

import httpx

from bluemap_edge import __version__
from bluemap_edge.vars import HOMEPAGE_URL

logger = logging.getLogger("uvicorn.error")

RequestContent = Optional[Union[bytes, AsyncIterable[bytes]]]


def build_user_agent(homepage: str = HOMEPAGE_URL) -> str:
    return f"Mozilla/5.0 (compatible; bluemap-edge/{__version__}; +{homepage})"


class UpstreamClient:
    """
    Outbound HTTP client bound to the Bluemap live server.

    The origin is fixed at construction and the underlying connection pool
    is shared by every proxied request for the lifetime of the process.
    """

    def __init__(
        self,
        origin: str,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._origin = origin
        self._client = httpx.AsyncClient(
            headers={"User-Agent": build_user_agent()},
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            transport=transport,
        )

    @property
    def origin(self) -> str:
        return self._origin

    def build_url(self, path_and_query: str) -> str:
        # The live server is local and always spoken to over plain HTTP
        return f"http://{self._origin}{path_and_query}"

    async def open_stream(
        self,
        method: str,
        path_and_query: str,
        headers: Mapping[str, str],
        content: RequestContent = None,
    ) -> httpx.Response:
        """
        Send a request and return as soon as the response headers arrived.

        The caller owns the returned response and must close it.
        """
        request = self._client.build_request(
            method,
            self.build_url(path_and_query),
            headers=headers,
            content=content,
        )
        logger.debug(f"Sending {method} {request.url} to Bluemap")
        return await self._client.send(request, stream=True)

    async def aclose(self) -> None:
        await self._client.aclose()
