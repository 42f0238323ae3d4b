from __future__ import annotations

import os
import re
import shutil
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import IO, List, Tuple, Union

from .errors import ExtractionError, PathTraversalError
from .logger import setup_logger

_logger = setup_logger()

DRIVE_RE = re.compile(r"^[A-Za-z]:")


@dataclass
class ExtractResult:
    written: int = 0
    skipped: int = 0
    directories: int = 0


def safe_output_path(base_dir: Path, relative_path: str) -> Path:
    """Join an archive entry path onto `base_dir`, refusing anything that escapes it."""
    normalized = relative_path.replace("\\", "/")
    parts = PurePosixPath(normalized).parts
    if (
        normalized.startswith("/")
        or ".." in parts
        or DRIVE_RE.match(normalized)
    ):
        raise PathTraversalError(f"Archive entry escapes the target directory: {relative_path!r}")

    root = base_dir.resolve()
    target = (root / normalized).resolve()
    if target != root and root not in target.parents:
        raise PathTraversalError(f"Archive entry escapes the target directory: {relative_path!r}")
    return target


def extract(
    archive: Union[str, Path, IO[bytes]],
    target_directory: Union[str, Path],
    overwrite: bool = False,
) -> ExtractResult:
    """
    Unpack every entry of a zip archive under `target_directory`, keeping relative paths.

    All entry paths are validated before anything is written. Existing files are
    skipped unless `overwrite` is set. A failure while writing aborts with
    ExtractionError and leaves what was already written in place.
    """
    target = Path(target_directory)
    result = ExtractResult()

    try:
        zf = zipfile.ZipFile(archive, "r")
    except (zipfile.BadZipFile, OSError) as e:
        raise ExtractionError(f"Not a readable package archive: {e}") from e

    with zf:
        plan: List[Tuple[zipfile.ZipInfo, Path]] = []
        for info in zf.infolist():
            if not info.filename:
                continue
            plan.append((info, safe_output_path(target, info.filename)))

        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExtractionError(f"Cannot create target directory {target}: {e}") from e

        for info, dest in plan:
            try:
                if info.is_dir():
                    dest.mkdir(parents=True, exist_ok=True)
                    result.directories += 1
                    continue

                dest.parent.mkdir(parents=True, exist_ok=True)
                if _write_entry(zf, info, dest, overwrite):
                    result.written += 1
                else:
                    _logger.debug("Skipping existing file %s", dest)
                    result.skipped += 1
            # zipfile raises RuntimeError for encrypted entries and NotImplementedError
            # for unsupported compression methods.
            except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile, RuntimeError, NotImplementedError) as e:
                raise ExtractionError(f"Failed to extract {info.filename!r} to {dest}: {e}") from e

    _logger.info(
        "Extracted %d files to %s (%d existing skipped).",
        result.written,
        target,
        result.skipped,
    )
    return result


def _write_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo, dest: Path, overwrite: bool) -> bool:
    # "xb" makes the existence check and the create one step.
    mode = "wb" if overwrite else "xb"
    # Open the entry first so an unreadable one leaves no empty file behind.
    with zf.open(info, "r") as src:
        try:
            out = open(dest, mode)
        except FileExistsError:
            return False
        with out:
            shutil.copyfileobj(src, out)

    mtime = time.mktime(info.date_time + (0, 0, -1))
    os.utime(dest, (mtime, mtime))
    return True
