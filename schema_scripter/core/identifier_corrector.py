"""Repair stale schema/object names in cached routine headers.

``sys.sql_modules.definition`` keeps the text a routine was last compiled
with. ``sp_rename`` and ``ALTER SCHEMA ... TRANSFER`` change the catalog but
not that text, so a scripted definition can create the object under its old
name. The corrector rewrites the two header tokens of ``CREATE <kind>
<schema>.<name>`` to the catalog identity, keeping each token's original
bracket quoting.
"""

from __future__ import annotations

import re
from typing import Dict, Optional, Pattern, Tuple

from schema_scripter.models import CorrectionResult, IdentifierToken, RoutineDefinition, RoutineKind
from schema_scripter.utils.logger import setup_logging

logger = setup_logging(__name__)

# A bracketed token may hold spaces; a bare one may not, or it would run into the
# rest of the header ("v1 AS SELECT ...").
_TOKEN = r"(?:\[(?P<{name}_bracketed>[A-Za-z0-9_ ]+)\]|(?P<{name}_bare>[A-Za-z0-9_]+))"
_SCHEMA_TOKEN = _TOKEN.format(name="schema")
_NAME_TOKEN = _TOKEN.format(name="name")


class HeaderParser:
    """Locates the schema and name tokens of one routine kind's header."""

    def __init__(self, kind: RoutineKind, keyword_pattern: str) -> None:
        self.kind = kind
        prefix = rf"CREATE\s+{keyword_pattern}\s+"
        self.schema_pattern: Pattern[str] = re.compile(
            prefix + _SCHEMA_TOKEN + r"\.", re.IGNORECASE
        )
        self.name_pattern: Pattern[str] = re.compile(
            prefix + _SCHEMA_TOKEN + r"\." + _NAME_TOKEN, re.IGNORECASE
        )

    def find_header(self, text: str) -> Optional[Tuple[IdentifierToken, IdentifierToken]]:
        """Both tokens of the first header, or ``None`` when that header is not ``<schema>.<name>``."""
        schema_match = self.schema_pattern.search(text)
        if schema_match is None:
            return None
        # Anchored at the first header so a later CREATE in the body is never used.
        name_match = self.name_pattern.match(text, schema_match.start())
        if name_match is None:
            return None
        return self._token(name_match, "schema"), self._token(name_match, "name")

    def find_schema(self, text: str) -> Optional[IdentifierToken]:
        header = self.find_header(text)
        return header[0] if header else None

    def find_name(self, text: str) -> Optional[IdentifierToken]:
        header = self.find_header(text)
        return header[1] if header else None

    @staticmethod
    def _token(match: re.Match[str], group: str) -> IdentifierToken:
        bracketed_group = f"{group}_bracketed"
        if match.group(bracketed_group) is not None:
            # The span is widened by one character on each side to cover the brackets.
            return IdentifierToken(
                value=match.group(bracketed_group),
                start=match.start(bracketed_group) - 1,
                end=match.end(bracketed_group) + 1,
                bracketed=True,
            )
        bare_group = f"{group}_bare"
        return IdentifierToken(
            value=match.group(bare_group),
            start=match.start(bare_group),
            end=match.end(bare_group),
            bracketed=False,
        )


_PARSERS: Dict[RoutineKind, HeaderParser] = {
    RoutineKind.PROCEDURE: HeaderParser(RoutineKind.PROCEDURE, r"PROC(?:EDURE)?"),
    RoutineKind.VIEW: HeaderParser(RoutineKind.VIEW, r"VIEW"),
    RoutineKind.FUNCTION: HeaderParser(RoutineKind.FUNCTION, r"FUNCTION"),
}


def register_header_parser(kind: RoutineKind, parser: HeaderParser) -> None:
    """Install or replace the header parser used for ``kind``."""
    _PARSERS[kind] = parser


def get_header_parser(kind: RoutineKind) -> HeaderParser:
    try:
        return _PARSERS[kind]
    except KeyError as exc:
        raise KeyError(f"No header parser registered for {kind!r}") from exc


def _same_identifier(left: str, right: str) -> bool:
    return left.casefold() == right.casefold()


def _replace_token(buffer: str, start: int, token: IdentifierToken, replacement: str) -> str:
    quoted = f"[{replacement}]" if token.bracketed else replacement
    return buffer[:start] + quoted + buffer[start + token.length:]


class IdentifierDriftCorrector:
    """Rewrites drifted header identifiers; never raises on malformed text."""

    def correct(self, routine: RoutineDefinition) -> CorrectionResult:
        original = routine.definition
        parser = get_header_parser(routine.kind)

        header = parser.find_header(original)
        if header is None:
            logger.debug(
                "Header of %s %s does not match CREATE %s <schema>.<name>; left unchanged",
                routine.kind.value,
                routine.qualified_name,
                routine.kind.keyword,
            )
            return CorrectionResult(text=original, header_matched=False)

        schema_token, name_token = header

        buffer = original
        delta = 0
        schema_corrected = False
        if not _same_identifier(schema_token.value, routine.schema_name):
            buffer = _replace_token(buffer, schema_token.start, schema_token, routine.schema_name)
            delta = len(buffer) - len(original)
            schema_corrected = True
            logger.debug(
                "%s: schema %r -> %r", routine.qualified_name, schema_token.value, routine.schema_name
            )

        # The name offset comes from the original text, so it is only valid in
        # the working buffer once shifted by the schema edit.
        name_corrected = False
        if not _same_identifier(name_token.value, routine.name):
            buffer = _replace_token(buffer, name_token.start + delta, name_token, routine.name)
            name_corrected = True
            logger.debug("%s: name %r -> %r", routine.qualified_name, name_token.value, routine.name)

        return CorrectionResult(
            text=buffer,
            header_matched=True,
            schema_corrected=schema_corrected,
            name_corrected=name_corrected,
        )


_default_corrector = IdentifierDriftCorrector()


def correct_definition(routine: RoutineDefinition) -> str:
    """Return ``routine.definition`` with its header identifiers matching the catalog."""
    return _default_corrector.correct(routine).text


__all__ = [
    "HeaderParser",
    "IdentifierDriftCorrector",
    "correct_definition",
    "get_header_parser",
    "register_header_parser",
]
