"""Pick an upstream proxy for a target URL from the usual *_PROXY variables."""

import re
from typing import Optional
from urllib.parse import urlsplit
from urllib.request import getproxies_environment

DEFAULT_PORTS = {"http": 80, "https": 443}


def should_proxy(hostname: str, port: int, no_proxy: str) -> bool:
    """
    False when ``no_proxy`` excludes this host.

    A plain entry matches the host exactly; only ``.suffix`` and ``*.suffix``
    entries match subdomains. Entries are separated by commas or whitespace.
    """
    no_proxy = no_proxy.lower()
    if not no_proxy:
        return True
    if no_proxy == "*":
        return False

    for entry in re.split(r"[,\s]", no_proxy):
        if not entry:
            continue
        parsed = re.match(r"^(.+):(\d+)$", entry)
        entry_host = parsed.group(1) if parsed else entry
        entry_port = int(parsed.group(2)) if parsed else 0
        if entry_port and entry_port != port:
            continue
        if not re.match(r"^[.*]", entry_host):
            if hostname == entry_host:
                return False
            continue
        if entry_host.startswith("*"):
            entry_host = entry_host[1:]
        if hostname.endswith(entry_host):
            return False
    return True


def get_proxy_for_url(url: str) -> Optional[str]:
    """
    Return the proxy URL to use for ``url``, or None to connect directly.

    Honours NO_PROXY first, then <SCHEME>_PROXY, then ALL_PROXY, with the
    lower-case variable winning over the upper-case one.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    hostname = (parts.hostname or "").lower()
    if scheme not in DEFAULT_PORTS or not hostname:
        return None
    try:
        port = parts.port or DEFAULT_PORTS[scheme]
    except ValueError:
        return None

    proxies = getproxies_environment()
    if not should_proxy(hostname, port, proxies.get("no", "")):
        return None

    proxy = proxies.get(scheme) or proxies.get("all")
    if proxy and "://" not in proxy:
        proxy = f"{scheme}://{proxy}"
    return proxy or None
