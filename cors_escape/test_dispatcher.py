import httpx
import pytest

from cors_escape.config import CorsEscapeConfig
from cors_escape.context import PendingRequest, RequestContext
from cors_escape.dispatcher import ProxyDispatcher, abort_response
from cors_escape.target import parse_target


def make_context(url="http://example.com/api?x=1", method="GET", headers=None, body=b"", **kwargs):
    return RequestContext(
        target=parse_target(url),
        request=PendingRequest(method=method, headers=headers or {}, body=body),
        relay_base_url="http://relay.local",
        get_proxy_for_url=kwargs.pop("get_proxy_for_url", lambda url: None),
        **kwargs,
    )


class TestPrepareHeaders:
    def test_hop_by_hop_and_host_are_dropped(self, config, upstream):
        dispatcher = ProxyDispatcher(upstream.client(), config)
        context = make_context(
            headers={
                "host": "relay.local",
                "connection": "keep-alive",
                "transfer-encoding": "chunked",
                "accept": "application/json",
            }
        )

        headers = dispatcher.prepare_headers(context)

        assert "host" not in headers
        assert "connection" not in headers
        assert "transfer-encoding" not in headers
        assert headers["accept"] == "application/json"

    def test_remove_and_set_headers(self, upstream):
        config = CorsEscapeConfig(
            remove_headers={"X-Heroku-Queue-Depth", "cookie"},
            set_headers={"X-Api-Key": "secret"},
            spoof_origin=False,
            xfwd=False,
        )
        dispatcher = ProxyDispatcher(upstream.client(), config)
        context = make_context(
            headers={"x-heroku-queue-depth": "3", "cookie": "a=b", "origin": "https://app.example"}
        )

        headers = dispatcher.prepare_headers(context)

        assert headers == {"x-api-key": "secret", "origin": "https://app.example"}

    def test_spoofed_origin_uses_target_scheme_and_hostname(self, config, upstream):
        dispatcher = ProxyDispatcher(upstream.client(), config)
        context = make_context(
            url="https://api.example.com:8443/v1", headers={"origin": "https://app.example"}
        )

        assert dispatcher.prepare_headers(context)["origin"] == "https://api.example.com"

    def test_forwarded_headers_on_first_hop_only(self, upstream):
        dispatcher = ProxyDispatcher(upstream.client(), CorsEscapeConfig())
        context = make_context(
            headers={"x-forwarded-for": "10.0.0.1"},
            client_host="192.168.1.100",
            client_port=51234,
            client_scheme="https",
        )

        headers = dispatcher.prepare_headers(context)

        assert headers["x-forwarded-for"] == "10.0.0.1,192.168.1.100"
        assert headers["x-forwarded-port"] == "51234"
        assert headers["x-forwarded-proto"] == "https"

        context.redirect_count = 1
        context.request.headers = {}
        assert "x-forwarded-for" not in dispatcher.prepare_headers(context)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_direct_request(self, config, upstream):
        upstream.add("http://example.com/api?x=1", 201, {"x-upstream": "yes"}, b"created")
        dispatcher = ProxyDispatcher(upstream.client(), config)
        context = make_context(method="POST", headers={"content-type": "text/plain"}, body=b"hi")

        exchange = await dispatcher.dispatch(context)

        assert exchange.response.status_code == 201
        assert exchange.response.headers["x-upstream"] == "yes"
        assert not exchange.via_proxy
        sent = upstream.requests[0]
        assert sent.method == "POST"
        assert sent.content == b"hi"
        assert sent.headers["host"] == "example.com"
        assert exchange.sent_headers["origin"] == "http://example.com"
        await exchange.response.aclose()

    @pytest.mark.asyncio
    async def test_body_is_not_read_before_caller_asks(self, config, upstream):
        upstream.add("http://example.com/api?x=1", 200, content=[b"a", b"b"])
        dispatcher = ProxyDispatcher(upstream.client(), config)

        exchange = await dispatcher.dispatch(make_context())

        stream = upstream.streams["http://example.com/api?x=1"]
        assert not stream.read
        await abort_response(exchange.response)
        assert stream.closed
        assert not stream.read

    @pytest.mark.asyncio
    async def test_chained_through_upstream_proxy(self, config, upstream):
        upstream.add("http://example.com/api?x=1", 200, content=b"via proxy")
        dispatcher = ProxyDispatcher(upstream.client(), config)
        context = make_context(get_proxy_for_url=lambda url: "http://proxy.local:3128")

        exchange = await dispatcher.dispatch(context)

        sent = upstream.requests[0]
        assert exchange.via_proxy
        assert sent.url.host == "proxy.local"
        assert sent.url.port == 3128
        assert sent.extensions["target"] == b"http://example.com/api?x=1"
        assert sent.headers["host"] == "example.com"
        await exchange.response.aclose()

    @pytest.mark.asyncio
    async def test_header_bytes_reach_upstream_unchanged(self, upstream):
        config = CorsEscapeConfig(set_headers={"x-unit": "€"}, xfwd=False)
        upstream.add("http://example.com/api?x=1", 200)
        dispatcher = ProxyDispatcher(upstream.client(), config)
        # Header values arrive latin-1 decoded from the ASGI server.
        context = make_context(headers={"x-note": "caf\xe9"})

        exchange = await dispatcher.dispatch(context)

        raw = upstream.requests[0].headers.raw
        assert (b"x-note", b"caf\xe9") in raw
        assert (b"x-unit", "€".encode("utf-8")) in raw
        await exchange.response.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, config, upstream):
        upstream.fail("http://example.com/api?x=1", httpx.ConnectError("refused"))
        dispatcher = ProxyDispatcher(upstream.client(), config)

        with pytest.raises(httpx.ConnectError):
            await dispatcher.dispatch(make_context())


class BrokenResponse:
    class request:
        url = "http://example.com/"

    async def aclose(self):
        raise httpx.ReadError("connection reset")


@pytest.mark.asyncio
async def test_abort_discards_errors():
    await abort_response(BrokenResponse())
