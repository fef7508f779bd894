"""Outbound HTTP plumbing shared by the payment provider adapters."""
from __future__ import annotations

from typing import Any, Mapping

import httpx


class ProviderCallError(Exception):
    """A provider call that never produced a usable response."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def post(
    *,
    provider: str,
    base_url: str,
    path: str,
    timeout: float,
    transport: httpx.BaseTransport | None = None,
    json_body: Mapping[str, Any] | None = None,
    form: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """POST to a provider and return its decoded JSON object.

    Transport failures, HTTP error statuses and undecodable bodies are raised
    as ``ProviderCallError`` with a ``<PROVIDER>_TIMEOUT`` or
    ``<PROVIDER>_ERROR`` code.
    """

    prefix = provider.upper()
    try:
        with httpx.Client(base_url=base_url, timeout=timeout, transport=transport) as client:
            response = client.post(path, json=json_body, data=form, headers=headers)
            response.raise_for_status()
            body = response.json()
    except httpx.TimeoutException as exc:
        raise ProviderCallError(f"{prefix}_TIMEOUT", f"{provider} did not respond within {timeout}s.") from exc
    except httpx.HTTPStatusError as exc:
        raise ProviderCallError(
            f"{prefix}_ERROR", f"{provider} answered HTTP {exc.response.status_code}."
        ) from exc
    except httpx.HTTPError as exc:
        raise ProviderCallError(f"{prefix}_ERROR", f"{provider} request failed: {exc}") from exc
    except ValueError as exc:
        raise ProviderCallError(f"{prefix}_ERROR", f"{provider} returned a non-JSON response.") from exc

    if not isinstance(body, dict):
        raise ProviderCallError(f"{prefix}_ERROR", f"{provider} returned an unexpected payload.")
    return body


__all__ = ["ProviderCallError", "post"]
