"""First line of upload handling: the declared-type gate and staging to disk.

Neither step trusts the client. The gate only looks at declared types, which
are trivially spoofed, so it is a cheap early filter; the sanitizer that runs
after staging is what actually inspects content.
"""

import logging
from pathlib import Path
import re
from typing import Iterable
import uuid

import aiofiles
import aiofiles.os

from domain.errors import IOFault, PayloadTooLarge, UnsupportedType
from domain.models import RawFile, StagedFile, StagingFault, StagingReport


logger = logging.getLogger(__name__)


MULTIPART = re.compile(r"multipart/form-data")


EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def _essence(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def admit(declared_type: str | None, allowed: re.Pattern[str] | str) -> None:
    """Reject `declared_type` unless it fully matches `allowed`."""
    pattern = re.compile(allowed) if isinstance(allowed, str) else allowed
    mime = _essence(declared_type)
    if not mime or pattern.fullmatch(mime) is None:
        raise UnsupportedType(f"Declared type '{mime or 'unknown'}' is not allowed.")


def admit_request(
    content_type: str | None,
    files: Iterable[RawFile],
    *,
    allowed: re.Pattern[str] | str,
    max_bytes: int,
) -> list[RawFile]:
    admit(content_type, MULTIPART)
    files = list(files)
    if not files:
        raise UnsupportedType("No files were uploaded.")
    for f in files:
        admit(f.content_type, allowed)
        if len(f.data) > max_bytes:
            raise PayloadTooLarge(f"Files may be at most {max_bytes} bytes.")
    return files


def unique_name(declared_type: str | None) -> str:
    return f"{uuid.uuid4().hex}{EXTENSIONS.get(_essence(declared_type), '')}"


async def stage(holding: Path, raw_files: Iterable[RawFile]) -> StagingReport:
    """Write every file to `holding` under a fresh unique name.

    A failed write is reported per file and does not undo its siblings.
    """
    try:
        await aiofiles.os.makedirs(holding, exist_ok=True)
    except OSError as e:
        raise IOFault(f"Could not create holding location: {e.strerror}") from e

    report = StagingReport()
    for raw in raw_files:
        name = unique_name(raw.content_type)
        path = holding / name
        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(raw.data)
        except OSError as e:
            logger.exception("Could not stage %s", name)
            report.faults.append(StagingFault(raw.filename, e.strerror or str(e)))
            # Partial writes must never reach the sanitizer.
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError:
                pass
            continue
        report.staged.append(StagedFile(raw.filename, name, len(raw.data)))

    if not report.staged:
        raise IOFault("No file could be staged.")
    logger.info("Staged %d file(s) in %s", len(report.staged), holding)
    return report
