from typing import Callable, Dict, List, Optional, Union

import httpx


class TrackedStream(httpx.AsyncByteStream):
    """Response body that remembers whether it was read and closed."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks
        self.read = False
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            self.read = True
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream:
    """
    Stand-in for every server the relay may talk to.

    Responses are registered per absolute URL. When a request goes through
    an upstream proxy, the absolute URL from the request line is used.
    """

    def __init__(self):
        self.responses: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []
        self.streams: Dict[str, TrackedStream] = {}

    def add(
        self,
        url: str,
        status_code: int = 200,
        headers: Optional[dict] = None,
        content: Union[bytes, List[bytes]] = b"",
    ) -> "FakeUpstream":
        chunks = content if isinstance(content, list) else [content]

        def respond(request: httpx.Request) -> httpx.Response:
            stream = TrackedStream(chunks)
            self.streams[url] = stream
            return httpx.Response(status_code, headers=headers or {}, stream=stream)

        self.responses[url] = respond
        return self

    def redirect(self, url: str, location: str, status_code: int = 302) -> "FakeUpstream":
        return self.add(url, status_code, headers={"location": location}, content=b"moved")

    def fail(self, url: str, error: Exception) -> "FakeUpstream":
        def respond(request: httpx.Request) -> httpx.Response:
            raise error

        self.responses[url] = respond
        return self

    def requested_url(self, request: httpx.Request) -> str:
        target = request.extensions.get("target")
        if target:
            return target.decode("ascii")
        return str(request.url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = self.requested_url(request)
        respond = self.responses.get(url)
        if respond is None:
            return httpx.Response(404, content=b"no such upstream route: " + url.encode())
        return respond(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), follow_redirects=False
        )
