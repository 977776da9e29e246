"""
Helper functions for common infrastructure operations.

This module provides domain-agnostic utility functions for:
- Token generation (cryptographic)
- HTTP request helpers (client IP and user agent extraction)

Usage:
    from core.helpers import generate_token, get_client_ip, get_user_agent

    token = generate_token(32)
    ip = get_client_ip(request)
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest


def generate_token(length: int = 32) -> str:
    """
    Generate a cryptographically secure URL-safe token.

    Args:
        length: Number of random bytes (token is longer once encoded)

    Example:
        claim_token = generate_token(16)
    """
    return secrets.token_urlsafe(length)


def get_client_ip(request: HttpRequest) -> str:
    """
    Extract client IP from request, handling proxies.

    Checks X-Forwarded-For header for proxy chains.

    Example:
        ip = get_client_ip(request)
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # Take the first IP in the chain (original client)
        ip = x_forwarded_for.split(",")[0].strip()
    else:
        ip = request.META.get("REMOTE_ADDR", "")
    return ip


def get_user_agent(request: HttpRequest) -> str:
    return request.META.get("HTTP_USER_AGENT", "")
