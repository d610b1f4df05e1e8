"""Identifier-drift correction and script assembly."""

from .identifier_corrector import IdentifierDriftCorrector, correct_definition, register_header_parser
from .script_assembler import BATCH_TERMINATOR, assemble_script

__all__ = [
    "IdentifierDriftCorrector",
    "correct_definition",
    "register_header_parser",
    "BATCH_TERMINATOR",
    "assemble_script",
]
