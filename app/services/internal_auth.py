from __future__ import annotations

import ipaddress
import secrets
from functools import lru_cache

from fastapi import Request

INTERNAL_TOKEN_HEADER = "X-Internal-Token"
ADMIN_TOKEN_HEADER = "X-Admin-Token"
SCHEDULER_TOKEN_HEADER = "X-Scheduler-Token"

DENIED_INVALID_TOKEN = "invalid_token"
DENIED_IP_NOT_ALLOWED = "ip_not_allowed"


def is_valid_internal_token(*, expected_token: str, received_token: str | None) -> bool:
    if not expected_token or not received_token:
        return False
    return secrets.compare_digest(expected_token, received_token)


@lru_cache(maxsize=32)
def _parse_allowlist(
    allowlist: str,
) -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
    networks: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = []
    for raw_entry in allowlist.split(","):
        entry = raw_entry.strip()
        if not entry:
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            continue
    return tuple(networks)


def _parse_ip(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def is_client_ip_allowed(*, client_ip: str | None, allowlist: str) -> bool:
    parsed_ip = _parse_ip(client_ip)
    if parsed_ip is None:
        return False

    networks = _parse_allowlist(allowlist)
    address = ipaddress.ip_address(parsed_ip)
    return any(address in network for network in networks)


def extract_client_ip(
    request: Request,
    *,
    trusted_proxies: str = "",
) -> str | None:
    client_host = _parse_ip(request.client.host if request.client is not None else None)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for and is_client_ip_allowed(client_ip=client_host, allowlist=trusted_proxies):
        return _parse_ip(forwarded_for.split(",", maxsplit=1)[0])
    return client_host


def internal_access_denial(
    request: Request,
    *,
    header_name: str,
    expected_token: str,
    allowlist: str | None = None,
    trusted_proxies: str = "",
) -> str | None:
    """Returns the reason the request is refused, or ``None`` when it may pass.

    ``allowlist=None`` skips the network check; an empty allowlist refuses
    every client.
    """
    if not is_valid_internal_token(
        expected_token=expected_token,
        received_token=request.headers.get(header_name),
    ):
        return DENIED_INVALID_TOKEN
    if allowlist is None:
        return None

    client_ip = extract_client_ip(request, trusted_proxies=trusted_proxies)
    if not is_client_ip_allowed(client_ip=client_ip, allowlist=allowlist):
        return DENIED_IP_NOT_ALLOWED
    return None
