import httpx

from cors_escape.cors import with_cors


def test_allow_origin_is_always_wildcard():
    headers = with_cors(None, {})

    assert headers["access-control-allow-origin"] == "*"
    assert "access-control-max-age" not in headers
    assert "access-control-allow-methods" not in headers


def test_max_age_only_when_configured():
    headers = with_cors(httpx.Headers(), {}, cors_max_age=600)

    assert headers["access-control-max-age"] == "600"


def test_preflight_request_headers_are_echoed_and_consumed():
    request_headers = {
        "access-control-request-method": "PUT",
        "access-control-request-headers": "x-custom, content-type",
        "origin": "https://app.example",
    }

    headers = with_cors(httpx.Headers(), request_headers)

    assert headers["access-control-allow-methods"] == "PUT"
    assert headers["access-control-allow-headers"] == "x-custom, content-type"
    assert request_headers == {"origin": "https://app.example"}


def test_expose_headers_lists_every_header_written_before_it():
    headers = httpx.Headers(
        {
            "content-type": "text/plain",
            "x-request-url": "http://example.com/",
            "x-final-url": "http://example.com/",
        }
    )

    headers = with_cors(headers, {"access-control-request-method": "GET"}, cors_max_age=5)

    assert headers["access-control-expose-headers"].split(",") == [
        "content-type",
        "x-request-url",
        "x-final-url",
        "access-control-allow-origin",
        "access-control-max-age",
        "access-control-allow-methods",
    ]


def test_expose_headers_replaces_an_upstream_value():
    headers = httpx.Headers({"access-control-expose-headers": "x-secret"})

    headers = with_cors(headers, {})

    assert headers["access-control-expose-headers"] == "access-control-allow-origin"


def test_upstream_allow_origin_is_overridden():
    headers = with_cors(httpx.Headers({"Access-Control-Allow-Origin": "https://a.example"}), {})

    assert headers.get_list("access-control-allow-origin") == ["*"]


def test_non_ascii_values_keep_their_bytes():
    headers = httpx.Headers([(b"x-name", "€".encode("utf-8"))])

    headers = with_cors(headers, {"access-control-request-headers": "x-caf\xe9"})

    assert (b"x-name", "€".encode("utf-8")) in headers.raw
    assert (b"access-control-allow-headers", b"x-caf\xe9") in headers.raw
