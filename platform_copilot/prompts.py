"""platform_copilot/prompts.py

System prompt construction.
"""

from __future__ import annotations

# Standard Library
from collections.abc import Sequence

# Local Modules
from platform_copilot.models import OperationSummary, SchemaField

BASE_PROMPT: str = (
    "You are an expert assistant for a customer data platform. You help operators "
    "monitor, diagnose and manage ingestion batches, datasets, schemas, identities, "
    "profiles, segments, queries, data flows and governance policies."
)

RESPONSE_STYLE: str = (
    "RESPONSE STYLE:\n"
    "- Never show raw JSON; summarize results in plain language with key numbers.\n"
    "- Highlight failures, anomalies and their likely cause.\n"
    "- Suggest a sensible next step when one exists.\n"
    "- Use markdown bullets and bold text where it helps."
)


def _schema_section(fields: Sequence[SchemaField]) -> str:
    lines = []
    for f in fields:
        values = f" [values: {', '.join(str(v) for v in f.enum)}]" if f.enum else ""
        lines.append(f"- {f.path} ({f.type}){values}")
    return "AVAILABLE SCHEMA FIELDS (Common Profile Attributes):\n" + "\n".join(lines)


def _profile_section(attributes: Sequence[SchemaField]) -> str:
    lines = "\n".join(f"- {a.path} ({a.type}): {a.title}" for a in attributes)
    return (
        f"PROFILE STORE ATTRIBUTES (for PQL queries):\n{lines}\n\n"
        "When writing PQL expressions, use these exact profile field paths."
    )


def build_system_prompt(
    operations: Sequence[OperationSummary],
    *,
    sandbox: str | None = None,
    schema_fields: Sequence[SchemaField] = (),
    profile_attributes: Sequence[SchemaField] = (),
) -> str:
    """Constructs the system prompt from the registered operations.

    Args:
        operations: Registry listing; approval-gated entries are called out so
            the model explains what it is about to do before proposing them.
        sandbox: Active sandbox name, if known.
        schema_fields: Common field paths from the schema registry.
        profile_attributes: Profile union attributes usable in PQL.

    Returns:
        The full system instruction.
    """
    sections: list[str] = [BASE_PROMPT]
    if sandbox:
        sections.append(f"All calls target the '{sandbox}' sandbox.")

    if operations:
        names = ", ".join(op.name for op in operations)
        sections.append(
            "Use the provided tools to fetch live platform data instead of answering "
            f"from memory. Available tools: {names}."
        )

    gated = [op.name for op in operations if op.requires_approval]
    if gated:
        sections.append(
            "RESTRICTIONS:\n"
            "- You cannot delete any resources.\n"
            f"- These actions change the platform and wait for operator approval: "
            f"{', '.join(gated)}. Explain what you are about to run before proposing one."
        )

    if schema_fields:
        sections.append(_schema_section(schema_fields))
    if profile_attributes:
        sections.append(_profile_section(profile_attributes))

    sections.append(RESPONSE_STYLE)
    return "\n\n".join(sections)
