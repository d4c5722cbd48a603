"""
Helpers for reading downstream HTTP responses.
"""

from typing import Any

import httpx


def decode_body(response: httpx.Response) -> Any:
    """Return the response body as JSON when possible, text otherwise, None when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
