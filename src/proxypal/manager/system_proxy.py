"""System proxy detection.

Environment settings (HTTPS_PROXY, HTTP_PROXY, ALL_PROXY) are consulted
first; OS-level settings (macOS SystemConfiguration, Windows registry)
second. Detection is best effort: any failure means "no proxy detected".
"""

from __future__ import annotations

__all__ = ["detect_system_proxy"]

import logging
import urllib.request
from collections.abc import Callable, Mapping
from urllib.parse import urlsplit

from proxypal.constants import APP_NAME

_logger = logging.getLogger(f"{APP_NAME}.manager.system_proxy")

# Preference order when several schemes are configured
_SCHEME_PREFERENCE = ("https", "http", "all")


def _pick(proxies: Mapping[str, str]) -> str | None:
    for scheme in _SCHEME_PREFERENCE:
        value = proxies.get(scheme)
        if value:
            return value
    return None


def _normalize(raw: str) -> str | None:
    """Reduce a proxy setting to scheme://host:port.

    A host mentioning "socks" is reported as socks5.
    """
    value = raw.strip()
    if "://" not in value:
        value = f"http://{value}"

    parts = urlsplit(value)
    try:
        port = parts.port
    except ValueError:
        return None  # Non-numeric port
    if not parts.hostname:
        return None

    scheme = parts.scheme or "http"
    if "socks" in scheme or "socks" in parts.hostname:
        scheme = "socks5"
    elif scheme not in ("http", "https"):
        scheme = "http"

    if port:
        return f"{scheme}://{parts.hostname}:{port}"
    return f"{scheme}://{parts.hostname}"


def detect_system_proxy(
    env_lookup: Callable[[], Mapping[str, str]] = urllib.request.getproxies_environment,
    os_lookup: Callable[[], Mapping[str, str]] = urllib.request.getproxies,
) -> str | None:
    """Detect the upstream proxy the user's system is configured with.

    Args:
        env_lookup: Source of environment proxy settings.
        os_lookup: Source of OS proxy settings (also sees the environment).

    Returns:
        Proxy URL like "http://127.0.0.1:7890", or None.
    """
    for source, lookup in (("environment", env_lookup), ("system", os_lookup)):
        try:
            raw = _pick(lookup())
        except Exception as e:  # noqa: BLE001 - platform lookups fail in many ways
            _logger.debug(
                {
                    "event": "system_proxy_lookup_failed",
                    "message": f"Proxy lookup via {source} settings failed: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )
            continue

        if raw:
            url = _normalize(raw)
            if url:
                _logger.debug(
                    {
                        "event": "system_proxy_detected",
                        "message": f"Detected {source} proxy: {url}",
                    }
                )
                return url
    return None
