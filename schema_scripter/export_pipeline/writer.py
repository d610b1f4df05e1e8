"""Script file persistence for the export pipeline."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Set

from schema_scripter.errors import WriteError
from schema_scripter.utils.logger import setup_logging

logger = setup_logging(__name__)

# Characters that cannot appear in a file name on Windows or POSIX.
_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def script_filename(*parts: str) -> str:
    """``dbo``, ``GetUsers`` -> ``dbo.GetUsers.sql``."""
    stem = ".".join(_UNSAFE_FILENAME_CHARS.sub("_", part) for part in parts)
    return f"{stem}.sql"


class SqlScriptWriter:
    """Persist script text as one ``.sql`` file per object."""

    def __init__(self, output_dir: Path, *, write_bom: bool = True) -> None:
        self.output_dir = output_dir
        self.encoding = "utf-8-sig" if write_bom else "utf-8"
        self._prepared: Set[Path] = set()

    def folder(self, name: str) -> Path:
        """Return the category folder, creating it the first time it is used."""
        path = self.output_dir / name
        if path not in self._prepared:
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise WriteError(path, f"cannot create folder: {exc}") from exc
            self._prepared.add(path)
        return path

    def write(self, folder_name: str, filename: str, script: str) -> Path:
        """Write ``script`` to ``<output>/<folder>/<filename>``, replacing any existing file.

        The text is written to a temporary sibling first and moved into place,
        so an interrupted write never leaves a truncated script behind. Line
        endings are written exactly as given.
        """
        path = self.folder(folder_name) / filename
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            with tmp_path.open("w", encoding=self.encoding, newline="") as handle:
                handle.write(script)
            tmp_path.replace(path)
        except OSError as exc:
            self._discard(tmp_path)
            raise WriteError(path, str(exc)) from exc
        logger.debug("Wrote %s", path)
        return path

    @staticmethod
    def _discard(tmp_path: Path) -> None:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove partial file %s: %s", tmp_path, exc)


__all__ = ["SqlScriptWriter", "script_filename"]
