"""Render a locked context into a system-prompt constraint block.

NORMAL lists every locked entity plus topic, format and must-keep blocks.
STRICT adds rejection-on-deviation language to each block. RELAXED keeps the
critical entities and the topic anchor mandatory and drops only the format
and must-keep requirements; the model may rephrase everything else.

The transform contract header is prepended in every mode. Rendering is a pure
function of (context, mode), so repeated calls yield identical text.
"""

from __future__ import annotations

from dataclasses import dataclass

from schemas.orchestrator import ContentFormat, LockedContext, LockedEntity, LockMode
from services.orchestrator.locked_context import get_critical_entities


RELAXED_MAX_ENTITIES = 8
RELAXED_MAX_KEYWORDS = 5
NORMAL_MAX_KEYWORDS = 10

FORMAT_DESCRIPTIONS: dict[ContentFormat, str] = {
    ContentFormat.BULLET_LIST: "Bullet list with - or • markers",
    ContentFormat.NUMBERED_LIST: "Numbered list with 1. 2. 3. format",
    ContentFormat.HEADING_SECTIONS: "Sections with headings (# or bold text)",
    ContentFormat.MIXED: "Mixed format with lists and paragraphs",
    ContentFormat.PARAGRAPH: "Flowing paragraphs",
}


@dataclass(frozen=True)
class ConstraintBlock:
    mode: LockMode
    entities_block: str
    topic_block: str
    format_block: str
    must_keep_block: str
    full_constraint: str


def _entities_block(entities: list[LockedEntity], mode: LockMode) -> str:
    if not entities:
        return ""

    critical = [e for e in entities if e.critical]
    preserve = [e for e in entities if not e.critical]

    if mode is LockMode.RELAXED:
        if not critical:
            return ""
        lines = [
            "## ENTITY ANCHORS (REQUIRED)",
            "These entities MUST appear in output (names, brands, numbers):",
        ]
        lines += [
            f"- **{e.value}** [{e.type.value}]" for e in critical[:RELAXED_MAX_ENTITIES]
        ]
        lines += [
            "",
            "✅ You may rephrase surrounding text.",
            "❌ You must NOT omit or change these entities.",
        ]
        return "\n".join(lines) + "\n"

    lines = ["## LOCKED ENTITIES"]
    if critical:
        lines.append("### CRITICAL (MUST appear exactly in output):")
        lines += [f"- [{e.type.value}] {e.value}" for e in critical]
    if preserve:
        lines.append("### PRESERVE (Should appear if relevant):")
        lines += [f"- [{e.type.value}] {e.value}" for e in preserve]
    if mode is LockMode.STRICT:
        lines += ["", "⚠️ STRICT MODE: Missing any CRITICAL entity will cause rejection."]
    return "\n".join(lines) + "\n"


def _topic_block(context: LockedContext, mode: LockMode) -> str:
    if mode is LockMode.RELAXED:
        lines = ["## TOPIC ANCHOR (REQUIRED)", f"**Core Topic:** {context.topic_summary}"]
        if context.topic_keywords:
            lines.append(
                f"**Key Terms:** {', '.join(context.topic_keywords[:RELAXED_MAX_KEYWORDS])}"
            )
        lines += [
            "",
            "✅ You may adjust tone, style, and structure per user directive.",
            "❌ You must NOT change the core topic or subject matter.",
        ]
        return "\n".join(lines) + "\n"

    lines = ["## TOPIC LOCK", f"### Summary: {context.topic_summary}"]
    if context.topic_keywords:
        lines.append(
            f"### Core Keywords: {', '.join(context.topic_keywords[:NORMAL_MAX_KEYWORDS])}"
        )
    lines.append("")
    if mode is LockMode.STRICT:
        lines.append(
            "⚠️ STRICT MODE: Output must stay on topic. Topic drift will cause rejection."
        )
    else:
        lines.append("Output should maintain the same topic and core message.")
    return "\n".join(lines) + "\n"


def _format_block(content_format: ContentFormat | None, mode: LockMode) -> str:
    if content_format is None or mode is LockMode.RELAXED:
        return ""
    lines = ["## FORMAT REQUIREMENT", f"Required format: {FORMAT_DESCRIPTIONS[content_format]}", ""]
    if mode is LockMode.STRICT:
        lines.append("⚠️ STRICT MODE: Output must match the required format.")
    else:
        lines.append(
            "Output should maintain similar structure unless explicitly asked to change."
        )
    return "\n".join(lines) + "\n"


def _must_keep_block(must_keep: list[str], mode: LockMode) -> str:
    if not must_keep or mode is LockMode.RELAXED:
        return ""
    lines = ["## MUST KEEP", "The following key points must be preserved:"]
    lines += [f"- {item}" for item in must_keep]
    if mode is LockMode.STRICT:
        lines += ["", "⚠️ STRICT MODE: Missing any must-keep item will cause rejection."]
    return "\n".join(lines) + "\n"


def build_transform_contract(mode: LockMode) -> str:
    """Mode-independent source-first contract, with a one-line mode note."""
    parts = [
        "# 🔒 TRANSFORM CONTRACT (MANDATORY)\n\n",
        "**YOU MUST:**\n",
        "- Transform the provided SOURCE_TEXT below\n",
        "- Keep the SAME topic and core subject matter\n",
        "- Preserve brand names, project names, and key entities\n",
        "- Output content that is clearly derived from the source\n\n",
        "**YOU MUST NOT:**\n",
        "- Create new unrelated content\n",
        "- Switch to a different topic\n",
        "- Invent new facts, names, or numbers not in source\n",
        "- Output a refusal or explanation instead of transformed content\n\n",
    ]
    if mode is LockMode.STRICT:
        parts.append(
            "⚠️ **STRICT MODE**: Any deviation from source topic will be rejected.\n\n"
        )
    elif mode is LockMode.RELAXED:
        parts.append(
            "💡 **DIRECTED MODE**: You may adjust tone, style, and framing per user "
            "directive, but MUST keep core topic and entities.\n\n"
        )
    parts.append("---\n\n")
    return "".join(parts)


def build_constraint_block(
    context: LockedContext, mode: LockMode = LockMode.NORMAL
) -> ConstraintBlock:
    """Render every constraint section for `context` at `mode`.

    Args:
        context: Locked context of the current source.
        mode: Strictness to render at.

    Returns:
        The individual sections plus `full_constraint`, the concatenated
        text to prepend to a system prompt.
    """
    entities_block = _entities_block(context.entities, mode)
    topic_block = _topic_block(context, mode)
    format_block = _format_block(context.required_format, mode)
    must_keep_block = _must_keep_block(context.must_keep, mode)

    parts = [build_transform_contract(mode)]
    if mode is LockMode.RELAXED:
        parts.append("# CORE ANCHORS (Must Preserve)\n\n")
    else:
        parts.append("# LOCKED CONTEXT CONSTRAINTS\n\n")
        if mode is LockMode.STRICT:
            parts.append("🔒 **STRICT MODE ACTIVE** - Any deviation will be rejected.\n\n")

    for block in (entities_block, topic_block, format_block, must_keep_block):
        if block:
            parts.append(block + "\n")
    parts.append("---\n\n")

    return ConstraintBlock(
        mode=mode,
        entities_block=entities_block,
        topic_block=topic_block,
        format_block=format_block,
        must_keep_block=must_keep_block,
        full_constraint="".join(parts),
    )


def inject_constraints(
    system_prompt: str, context: LockedContext, mode: LockMode = LockMode.NORMAL
) -> str:
    """Prepend the constraint block to `system_prompt`."""
    return build_constraint_block(context, mode).full_constraint + system_prompt


def build_source_reference(source_content: str) -> str:
    return f"\n\n---\n**SOURCE CONTENT TO TRANSFORM:**\n```\n{source_content}\n```\n---\n"


def has_critical_entities(context: LockedContext) -> bool:
    return bool(get_critical_entities(context))


def get_constraint_summary(context: LockedContext) -> str:
    """One-line description of what is locked, for display next to the draft."""
    parts: list[str] = []
    critical_count = len(get_critical_entities(context))
    if critical_count:
        parts.append(f"{critical_count} critical entities")
    if context.required_format:
        parts.append(FORMAT_DESCRIPTIONS[context.required_format])
    if context.must_keep:
        parts.append(f"{len(context.must_keep)} key points")
    if not parts:
        return "Topic lock active"
    return "Locked: " + ", ".join(parts)
