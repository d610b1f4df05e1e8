"""Wrap routine text into a deployable T-SQL script."""

from __future__ import annotations

# Deployment tooling splits scripts on this exact line; keep both constants byte-stable.
BATCH_TERMINATOR = "GO"
LINE_BREAK = "\r\n"


def _on_off(flag: bool) -> str:
    return "ON" if flag else "OFF"


def directive_block(uses_ansi_nulls: bool, uses_quoted_identifier: bool) -> str:
    """The two ``SET`` batches that must precede a routine's ``CREATE`` statement."""
    return (
        f"SET ANSI_NULLS {_on_off(uses_ansi_nulls)}{LINE_BREAK}"
        f"{BATCH_TERMINATOR}{LINE_BREAK}"
        f"SET QUOTED_IDENTIFIER {_on_off(uses_quoted_identifier)}{LINE_BREAK}"
        f"{BATCH_TERMINATOR}{LINE_BREAK}"
    )


def assemble_script(corrected_text: str, uses_ansi_nulls: bool, uses_quoted_identifier: bool) -> str:
    """Return the final script text for one routine.

    The body is passed through verbatim. A line break is added only when the
    script so far does not already end with one, so it always closes with a
    single terminator line. An empty body leaves the directive block directly
    followed by the terminator.
    """
    parts = [directive_block(uses_ansi_nulls, uses_quoted_identifier), corrected_text]
    if not "".join(parts).endswith(("\r", "\n")):
        parts.append(LINE_BREAK)
    parts.append(f"{BATCH_TERMINATOR}{LINE_BREAK}")
    return "".join(parts)


__all__ = ["BATCH_TERMINATOR", "LINE_BREAK", "assemble_script", "directive_block"]
