import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "cors-escape")
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "2000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def _parse_list(raw: str) -> list:
    return [entry.strip() for entry in raw.split(",") if entry.strip()]


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_set_headers(raw: str) -> dict:
    mapping: dict = {}
    if not raw:
        return mapping
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            key, val = entry.split("=", 1)
            key = key.strip().lower()
            val = val.strip()
            if key:
                mapping[key] = val
    return mapping


# The blacklist only exists to counter immediate abuse. Use the whitelist to
# block every origin except a few.
ORIGIN_BLACKLIST = _parse_list(os.environ.get("CORSESCAPE_BLACKLIST", ""))
ORIGIN_WHITELIST = _parse_list(os.environ.get("CORSESCAPE_WHITELIST", ""))
RATE_LIMIT = os.environ.get("CORSESCAPE_RATELIMIT", "")

REQUIRE_HEADERS = _parse_list(os.environ.get("CORSESCAPE_REQUIRE_HEADERS", "origin"))
REMOVE_HEADERS = _parse_list(
    os.environ.get(
        "CORSESCAPE_REMOVE_HEADERS",
        "x-heroku-queue-wait-time,x-heroku-queue-depth,x-heroku-dynos-in-use,x-request-start",
    )
)
SET_HEADERS = _parse_set_headers(os.environ.get("CORSESCAPE_SET_HEADERS", ""))

MAX_REDIRECTS = int(os.environ.get("CORSESCAPE_MAX_REDIRECTS", "5"))
CORS_MAX_AGE = int(os.environ.get("CORSESCAPE_CORS_MAX_AGE", "0"))
REDIRECT_SAME_ORIGIN = _parse_bool(os.environ.get("CORSESCAPE_REDIRECT_SAME_ORIGIN", "true"))
SPOOF_ORIGIN = _parse_bool(os.environ.get("CORSESCAPE_SPOOF_ORIGIN", "true"))
# The hosting platform usually adds X-Forwarded-* already.
XFWD = _parse_bool(os.environ.get("CORSESCAPE_XFWD", "false"))

PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "30"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
