"""tests/test_schema_context.py

Unit tests for the startup schema lookups (platform_copilot/platform/schema_context.py)
and how the copilot folds them into its system prompt.
"""

from __future__ import annotations

# Standard Library
from typing import Any

# Third-Party Libraries
import httpx
import pytest

# Local Modules
from platform_copilot.agent import Copilot
from platform_copilot.platform.catalog import SCHEMA_REGISTRY
from platform_copilot.platform.client import PlatformClient
from platform_copilot.platform.schema_context import (
    FULL_SCHEMA,
    flatten_properties,
    load_schema_context,
)
from platform_copilot.registry import OperationRegistry
from platform_copilot.settings import CopilotSettings

SCHEMA_ROUTES: dict[str, Any] = {
    f"{SCHEMA_REGISTRY}/tenant/schemas": {
        "results": [
            {"$id": "https://ns.adobe.com/acme/schemas/a", "meta:altId": "_acme.schemas.a"},
            {"$id": "https://ns.adobe.com/acme/schemas/b", "meta:altId": "_acme.schemas.b"},
        ]
    },
    f"{SCHEMA_REGISTRY}/tenant/schemas/_acme.schemas.a": {
        "title": "Customer",
        "properties": {
            "$ref": "ignored",
            "_id": {"type": "string"},
            "person": {
                "type": "object",
                "properties": {
                    "gender": {
                        "type": "string",
                        "enum": ["male", "female", "non_specific", "not_specified", "unknown", "x"],
                    },
                    "name": {
                        "type": "object",
                        "properties": {"firstName": {"type": "string", "title": "First name"}},
                    },
                },
            },
        },
    },
}

UNION_ROUTES: dict[str, Any] = {
    f"{SCHEMA_REGISTRY}/tenant/unions": {
        "results": [
            {
                "$id": "https://ns.adobe.com/xdm/context/experienceevent__union",
                "meta:altId": "_xdm.context.experienceevent__union",
                "title": "XDM ExperienceEvent",
            },
            {
                "$id": "https://ns.adobe.com/xdm/context/profile__union",
                "meta:altId": "_xdm.context.profile__union",
                "title": "XDM Individual Profile",
            },
        ]
    },
    f"{SCHEMA_REGISTRY}/tenant/unions/_xdm.context.profile__union": {
        "title": "XDM Individual Profile",
        "properties": {
            "personalEmail": {
                "type": "object",
                "title": "Personal email",
                "properties": {"address": {"type": "string", "title": "Address"}},
            },
            "loyaltyDetails": {
                "type": "object",
                "properties": {"level": {"type": "string", "title": "Level"}},
            },
            "segmentMembership": {"type": "object"},
        },
    },
}


def _client(routes: dict[str, Any], seen: list[httpx.Request] | None = None) -> PlatformClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path not in routes:
            return httpx.Response(404, json={"title": "not found"})
        return httpx.Response(200, json=routes[request.url.path])

    return PlatformClient("https://platform.test", transport=httpx.MockTransport(handler))


class TestFlattenProperties:
    """Test suite for flatten_properties."""

    def test_nested_paths_and_bookkeeping_keys(self) -> None:
        """Test dotted paths, skipped registry keys and defaulted type and title."""
        fields = flatten_properties(
            {
                "meta:xdmType": {"type": "object"},
                "$id": "x",
                "homeAddress": {"properties": {"city": {"type": "string"}}},
            }
        )

        assert [f.path for f in fields] == ["homeAddress", "homeAddress.city"]
        assert fields[0].type == "string"
        assert fields[1].title == "city"


class TestLoadSchemaContext:
    """Test suite for load_schema_context."""

    @pytest.mark.asyncio
    async def test_collects_common_fields_and_profile_attributes(self) -> None:
        """Test both lookups against a fake schema registry."""
        seen: list[httpx.Request] = []

        context = await load_schema_context(_client({**SCHEMA_ROUTES, **UNION_ROUTES}, seen))

        assert context.total_fields == 5
        assert [f.path for f in context.common_fields] == [
            "person.gender",
            "person.name.firstName",
        ]
        assert context.common_fields[0].enum == [
            "male",
            "female",
            "non_specific",
            "not_specified",
            "unknown",
        ]
        assert context.profile_title == "XDM Individual Profile"
        assert [f.path for f in context.profile_attributes] == [
            "personalEmail",
            "personalEmail.address",
            "loyaltyDetails",
            "loyaltyDetails.level",
        ]
        detail = next(r for r in seen if r.url.path.endswith("_acme.schemas.a"))
        assert detail.headers["Accept"] == FULL_SCHEMA

    @pytest.mark.asyncio
    async def test_failed_lookup_leaves_its_part_empty(self) -> None:
        """Test that a missing union listing does not discard the schema fields."""
        context = await load_schema_context(_client(SCHEMA_ROUTES))

        assert [f.path for f in context.common_fields] == [
            "person.gender",
            "person.name.firstName",
        ]
        assert context.profile_attributes == []
        assert context.profile_title == ""

    @pytest.mark.asyncio
    async def test_unreachable_registry_gives_empty_context(self) -> None:
        """Test that platform errors are logged, not raised."""
        context = await load_schema_context(_client({}))

        assert context.total_fields == 0
        assert context.common_fields == []
        assert context.profile_attributes == []


class TestCopilotSchemaContext:
    """Test suite for Copilot.load_schema_context."""

    @pytest.mark.asyncio
    async def test_prompt_is_rebuilt_with_schema_sections(
        self, registry: OperationRegistry, settings: CopilotSettings
    ) -> None:
        """Test that the generated prompt gains the schema sections."""
        copilot = Copilot(
            registry, None, settings=settings, platform=_client({**SCHEMA_ROUTES, **UNION_ROUTES})
        )
        assert "AVAILABLE SCHEMA FIELDS" not in copilot.system_prompt

        context = await copilot.load_schema_context()

        assert context is copilot.schema_context
        assert "- person.gender (string) [values: male" in copilot.system_prompt
        assert "- loyaltyDetails.level (string): Level" in copilot.system_prompt

    @pytest.mark.asyncio
    async def test_explicit_prompt_is_kept(
        self, registry: OperationRegistry, settings: CopilotSettings
    ) -> None:
        """Test that a caller-supplied prompt is not overwritten."""
        copilot = Copilot(
            registry,
            None,
            settings=settings,
            system_prompt="Be brief.",
            platform=_client(SCHEMA_ROUTES),
        )

        await copilot.load_schema_context()

        assert copilot.system_prompt == "Be brief."
        assert copilot.schema_context is not None

    @pytest.mark.asyncio
    async def test_without_platform_client(
        self, registry: OperationRegistry, settings: CopilotSettings
    ) -> None:
        """Test that there is nothing to load without a platform client."""
        copilot = Copilot(registry, None, settings=settings)

        assert await copilot.load_schema_context() is None
        assert copilot.schema_context is None
