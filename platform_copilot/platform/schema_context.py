"""platform_copilot/platform/schema_context.py

Read-only schema lookups that seed the system prompt with real field paths.

Two views are collected at startup:
  - common fields across the first tenant schemas (for SQL and general
    questions)
  - attributes of the profile union schema (for PQL segment definitions)

Either lookup may fail; the failure is logged and that view is left empty.
"""

from __future__ import annotations

# Standard Library
import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import quote

# Local Modules
from platform_copilot.errors import OperationError
from platform_copilot.models import SchemaContext, SchemaField
from platform_copilot.platform.catalog import SCHEMA_REGISTRY
from platform_copilot.platform.client import PlatformClient

logger = logging.getLogger(__name__)

ID_LISTING = "application/vnd.adobe.xed-id+json"
FULL_SCHEMA = "application/vnd.adobe.xed-full+json; version=1"

SCHEMAS_SCANNED = 10
COMMON_FIELD_LIMIT = 30
PROFILE_ATTRIBUTE_LIMIT = 20
ENUM_PREVIEW = 5

COMMON_FIELD_PATTERNS: tuple[str, ...] = (
    "email",
    "gender",
    "birthdate",
    "age",
    "firstname",
    "lastname",
    "phone",
    "address",
    "city",
    "country",
    "loyalty",
    "status",
    "tier",
)
PROFILE_PATTERNS: tuple[str, ...] = (
    "email",
    "firstname",
    "lastname",
    "birthdate",
    "gender",
    "phone",
    "address",
    "loyalty",
    "tier",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def flatten_properties(properties: Mapping[str, Any], prefix: str = "") -> list[SchemaField]:
    """Flatten nested XDM ``properties`` into dotted field paths.

    Registry bookkeeping keys (``$id``, ``meta:*``) are skipped.
    """
    fields: list[SchemaField] = []
    for key, value in properties.items():
        if key.startswith("$") or key.startswith("meta:") or not isinstance(value, Mapping):
            continue
        path = f"{prefix}.{key}" if prefix else key
        fields.append(
            SchemaField(
                path=path,
                type=value.get("type") or "string",
                title=value.get("title") or key,
                enum=list(value.get("enum") or [])[:ENUM_PREVIEW],
            )
        )
        nested = value.get("properties")
        if isinstance(nested, Mapping):
            fields.extend(flatten_properties(nested, path))
    return fields


def _matching(
    fields: Iterable[SchemaField], patterns: tuple[str, ...], limit: int
) -> list[SchemaField]:
    matched = [f for f in fields if any(p in f.path.lower() for p in patterns)]
    return matched[:limit]


def _resource_id(record: Mapping[str, Any]) -> str:
    return quote(str(record.get("meta:altId") or record.get("$id") or ""), safe="")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def load_schema_fields(client: PlatformClient) -> tuple[int, list[SchemaField]]:
    """Collect field paths from the first tenant schemas.

    Returns:
        Total number of flattened fields and the common subset.
    """
    listing = await client.request(
        "GET",
        f"{SCHEMA_REGISTRY}/tenant/schemas",
        params={"limit": SCHEMAS_SCANNED},
        headers={"Accept": ID_LISTING},
    )
    fields: list[SchemaField] = []
    for schema in (listing or {}).get("results", [])[:SCHEMAS_SCANNED]:
        schema_id = _resource_id(schema)
        if not schema_id:
            continue
        try:
            details = await client.request(
                "GET",
                f"{SCHEMA_REGISTRY}/tenant/schemas/{schema_id}",
                headers={"Accept": FULL_SCHEMA},
            )
        except OperationError as exc:
            logger.debug("[schema] skipping %s: %s", schema_id, exc.message)
            continue
        fields.extend(flatten_properties((details or {}).get("properties") or {}))

    # schemas built from the same field groups repeat paths
    unique: dict[str, SchemaField] = {}
    for schema_field in fields:
        unique.setdefault(schema_field.path, schema_field)
    return len(unique), _matching(unique.values(), COMMON_FIELD_PATTERNS, COMMON_FIELD_LIMIT)


async def load_profile_attributes(client: PlatformClient) -> tuple[str, list[SchemaField]]:
    """Collect attributes of the profile union schema for PQL.

    Returns:
        The union's title and its common attributes.
    """
    listing = await client.request(
        "GET", f"{SCHEMA_REGISTRY}/tenant/unions", headers={"Accept": ID_LISTING}
    )
    unions = (listing or {}).get("results", [])
    if not unions:
        return "", []
    profile = next(
        (
            u
            for u in unions
            if "profile" in str(u.get("title", "")).lower() or "profile" in str(u.get("$id", ""))
        ),
        unions[0],
    )
    details = await client.request(
        "GET",
        f"{SCHEMA_REGISTRY}/tenant/unions/{_resource_id(profile)}",
        headers={"Accept": FULL_SCHEMA},
    )
    details = details or {}
    fields = flatten_properties(details.get("properties") or {})
    title = details.get("title") or profile.get("title") or "XDM Individual Profile"
    return title, _matching(fields, PROFILE_PATTERNS, PROFILE_ATTRIBUTE_LIMIT)


async def load_schema_context(client: PlatformClient) -> SchemaContext:
    """Run both lookups; a failing lookup leaves its part of the context empty."""
    fields_result, profile_result = await asyncio.gather(
        load_schema_fields(client),
        load_profile_attributes(client),
        return_exceptions=True,
    )

    context = SchemaContext()
    if isinstance(fields_result, OperationError):
        logger.warning("[schema] schema fields unavailable: %s", fields_result.message)
    elif isinstance(fields_result, BaseException):
        raise fields_result
    else:
        context.total_fields, context.common_fields = fields_result

    if isinstance(profile_result, OperationError):
        logger.warning("[schema] profile attributes unavailable: %s", profile_result.message)
    elif isinstance(profile_result, BaseException):
        raise profile_result
    else:
        context.profile_title, context.profile_attributes = profile_result

    logger.info(
        "[schema] context loaded: %d fields, %d common, %d profile attributes",
        context.total_fields,
        len(context.common_fields),
        len(context.profile_attributes),
    )
    return context
