"""Bearer token and tenant hint extraction for HTTP and gRPC.

Both transports carry the same information:
- ``authorization: Bearer <jwt>``
- optional tenant hints, ``x-company-id`` / ``x-business-unit`` / ``x-outlet-id``
  by default (names come from TenancyConfig)
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from .config import TenancyConfig

logger = logging.getLogger(__name__)

AUTH_HEADER = "authorization"
BEARER_PREFIX = "bearer "


def parse_bearer(value: Optional[str]) -> Optional[str]:
    """Token from an ``Authorization`` value, or None when absent or not Bearer."""
    if not value:
        return None
    value = value.strip()
    if value.lower().startswith(BEARER_PREFIX):
        token = value[len(BEARER_PREFIX):].strip()
        return token or None
    return None


def _lower_keys(items: Iterable[tuple[Any, Any]]) -> dict[str, str]:
    lowered: dict[str, str] = {}
    for key, value in items:
        if isinstance(key, bytes):
            key = key.decode("latin-1")
        if isinstance(value, bytes):
            value = value.decode("latin-1")
        lowered.setdefault(str(key).lower(), str(value))
    return lowered


def normalize_headers(headers: Any) -> dict[str, str]:
    """Lower-cased header dict from a Mapping, ASGI header list or gRPC metadata."""
    if headers is None:
        return {}
    if isinstance(headers, Mapping):
        return _lower_keys(headers.items())
    return _lower_keys(headers)


# =========================================
# HTTP
# =========================================


def extract_token_from_http_headers(headers: Any) -> Optional[str]:
    """Bearer token from HTTP headers (Mapping or raw ASGI header list)."""
    return parse_bearer(normalize_headers(headers).get(AUTH_HEADER))


def create_http_headers_with_token(token: Optional[str], tenant: Optional[Mapping[str, str]] = None,
                                   tenancy: Optional[TenancyConfig] = None) -> dict[str, str]:
    """Outbound headers for a client call: bearer token plus tenant hints."""
    headers: dict[str, str] = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    headers.update(tenant_hint_headers(tenant, tenancy))
    return headers


# =========================================
# gRPC
# =========================================


def extract_token_from_grpc_metadata(context: Any) -> Optional[str]:
    """Bearer token from a ServicerContext or HandlerCallDetails."""
    metadata = getattr(context, "invocation_metadata", None)
    if callable(metadata):
        metadata = metadata()
    return parse_bearer(normalize_headers(metadata or ()).get(AUTH_HEADER))


def create_grpc_metadata_with_token(
    token: Optional[str],
    tenant: Optional[Mapping[str, str]] = None,
    tenancy: Optional[TenancyConfig] = None,
    additional_metadata: Optional[list[tuple[str, str]]] = None,
) -> list[tuple[str, str]]:
    """Outbound gRPC metadata; keys are lowercase as gRPC requires."""
    metadata: list[tuple[str, str]] = []
    if token:
        metadata.append((AUTH_HEADER, f"Bearer {token}"))
    metadata.extend(tenant_hint_headers(tenant, tenancy).items())
    if additional_metadata:
        metadata.extend(additional_metadata)
    return metadata


# =========================================
# Tenant hints
# =========================================


def tenant_hint_headers(tenant: Optional[Mapping[str, str]], tenancy: Optional[TenancyConfig] = None) -> dict[str, str]:
    tenancy = tenancy or TenancyConfig()
    names = {
        "company": tenancy.company_header,
        "business_unit": tenancy.business_unit_header,
        "outlet": tenancy.outlet_header,
    }
    return {names[k]: v for k, v in (tenant or {}).items() if k in names and v}


def extract_tenant_hints(headers: Any, tenancy: Optional[TenancyConfig] = None) -> dict[str, str]:
    """Tenant hints present in ``headers``, keyed company/business_unit/outlet."""
    tenancy = tenancy or TenancyConfig()
    lowered = normalize_headers(headers)
    hints = {
        "company": lowered.get(tenancy.company_header, "").strip(),
        "business_unit": lowered.get(tenancy.business_unit_header, "").strip(),
        "outlet": lowered.get(tenancy.outlet_header, "").strip(),
    }
    return {k: v for k, v in hints.items() if v}


__all__ = [
    "AUTH_HEADER",
    "parse_bearer",
    "normalize_headers",
    "extract_token_from_http_headers",
    "create_http_headers_with_token",
    "extract_token_from_grpc_metadata",
    "create_grpc_metadata_with_token",
    "tenant_hint_headers",
    "extract_tenant_hints",
]
