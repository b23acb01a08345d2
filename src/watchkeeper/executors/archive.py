import logging
import os
import re
import zipfile
from pathlib import Path
from typing import Iterable, List, Optional, Pattern

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PATTERNS: List[str] = [
    r"\.tmp$",  # temporary files
    r"\.jfr\.tmp$",  # Java Flight Recorder temp files
    r"(^|/)tmp-client/",
    r"\.lck$",  # lock files
    r"(^|/)session\.lock$",  # game server session locks
]


class ExclusionRules:
    """
    Regular expressions matched against archive entry names.

    Entry names are relative POSIX paths; directories end with a slash so that a
    rule such as ``tmp-client/`` excludes a whole subtree.
    """

    def __init__(self, patterns: Optional[Iterable[str]] = None):
        self.patterns: List[Pattern[str]] = [
            re.compile(p, re.IGNORECASE) for p in (DEFAULT_EXCLUDE_PATTERNS if patterns is None else patterns)
        ]

    def extend(self, *patterns: str) -> "ExclusionRules":
        self.patterns.extend(re.compile(p, re.IGNORECASE) for p in patterns)
        return self

    def matches(self, entry_name: str) -> bool:
        return any(pattern.search(entry_name) for pattern in self.patterns)


class ZipArchiver:
    """
    Writes a deflate-compressed zip of a directory or a single file.

    Blocking; callers run it in a worker thread.
    """

    def __init__(self, exclusions: Optional[ExclusionRules] = None, compress_level: int = 9):
        self.exclusions = exclusions or ExclusionRules()
        self.compress_level = compress_level

    def write(self, source: Path, destination: Path) -> int:
        """
        Archive `source` into `destination` and return the archive size in bytes.
        Modification times before 1980 are stored as 1980-01-01.
        """
        with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED,
                             compresslevel=self.compress_level, strict_timestamps=False) as archive:
            if source.is_dir():
                self._add_directory(archive, source)
            else:
                archive.write(source, arcname=source.name)
        return destination.stat().st_size

    def _add_directory(self, archive: zipfile.ZipFile, root: Path) -> None:
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            relative_dir = current.relative_to(root).as_posix()
            prefix = "" if relative_dir == "." else f"{relative_dir}/"

            kept_dirs = []
            for name in sorted(dirnames):
                entry = f"{prefix}{name}/"
                if self.exclusions.matches(entry):
                    logger.info(f"Skipping directory: {entry}")
                else:
                    kept_dirs.append(name)
            dirnames[:] = kept_dirs

            if prefix and not filenames and not kept_dirs:
                archive.writestr(prefix, b"")

            for name in sorted(filenames):
                entry = f"{prefix}{name}"
                if self.exclusions.matches(entry):
                    logger.info(f"Skipping file: {entry}")
                    continue
                archive.write(current / name, arcname=entry)
