from __future__ import annotations

import ipaddress
from functools import lru_cache
from typing import Optional, Tuple

from fastapi import Request

from proxyguard.core.settings import get_settings

UNKNOWN_IP = "0.0.0.0"


@lru_cache(maxsize=8)
def _networks(cidrs: Tuple[str, ...]):
    return tuple(ipaddress.ip_network(item, strict=False) for item in cidrs)


def _normalize(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def _is_trusted(peer: str) -> bool:
    networks = _networks(tuple(get_settings().trusted_proxies))
    address = ipaddress.ip_address(peer)
    return any(address in network for network in networks)


def client_ip(request: Request) -> str:
    """
    Address of the end client.

    ``X-Real-IP`` / ``X-Forwarded-For`` are only honoured when the direct
    peer is one of the trusted proxies (nginx in front of this service).
    Without a usable peer address the headers are ignored as well.
    """
    client = request.client
    peer = _normalize(client.host if client else None)
    if peer is None:
        return UNKNOWN_IP
    if not _is_trusted(peer):
        return peer

    forwarded = _normalize(request.headers.get("x-real-ip"))
    if forwarded:
        return forwarded
    chain = request.headers.get("x-forwarded-for", "")
    first = _normalize(chain.split(",")[0]) if chain else None
    return first or peer


__all__ = ["client_ip", "UNKNOWN_IP"]
