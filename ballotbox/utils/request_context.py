from typing import Optional
from flask import request


def client_address() -> Optional[str]:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    return first or request.remote_addr


def user_agent(max_length: int = 512) -> Optional[str]:
    ua = request.headers.get("User-Agent")
    return ua[:max_length] if ua else None
