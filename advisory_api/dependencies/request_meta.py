from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

DEVICE_ID_HEADERS = ("x-device-id", "device-id")
CLIENT_IP_HEADERS = ("x-real-ip", "x-client-ip")


@dataclass(frozen=True)
class RequestMeta:
    device_id: str | None
    ip: str | None
    user_agent: str | None


def _header(request: Request, name: str) -> str | None:
    value = request.headers.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_device_id(request: Request) -> str | None:
    for name in DEVICE_ID_HEADERS:
        value = _header(request, name)
        if value:
            return value[:128]
    return None


def get_client_ip(request: Request) -> str | None:
    """First hop of X-Forwarded-For, then X-Real-IP / X-Client-IP, then the socket peer."""
    forwarded = _header(request, "x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for name in CLIENT_IP_HEADERS:
        value = _header(request, name)
        if value:
            return value
    client = request.client
    return client.host if client else None


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta(
        device_id=get_device_id(request),
        ip=get_client_ip(request),
        user_agent=_header(request, "user-agent"),
    )
