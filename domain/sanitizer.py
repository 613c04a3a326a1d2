import logging
import os
from pathlib import Path
import re

import aiofiles
import aiofiles.os

from ajolt import off_thread
from domain.sniffer import classify


logger = logging.getLogger(__name__)


RETAINED_MODE = 0o644


async def sanitize(holding: Path, allowed: re.Pattern[str] | str) -> list[str]:
    """Sweep `holding`, deleting every file whose content is not allowed.

    This analyses the actual file contents as opposed to the extension or the
    declared type. The directory listing is a snapshot: a file that vanishes
    before it is read has already been dealt with and is skipped.

    Returns the names of the files that survived.
    """
    pattern = re.compile(allowed) if isinstance(allowed, str) else allowed
    try:
        names = await aiofiles.os.listdir(holding)
    except FileNotFoundError:
        return []

    survivors: list[str] = []
    for name in sorted(names):
        path = holding / name
        try:
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        except (FileNotFoundError, IsADirectoryError):
            continue

        media_type = classify(data)
        if media_type is None or pattern.fullmatch(media_type.mime) is None:
            logger.warning(
                "Rejected %s (%s)", name, media_type.mime if media_type else "unknown"
            )
            try:
                await aiofiles.os.remove(path)
            except FileNotFoundError:
                pass
            continue

        try:
            await off_thread(os.chmod, path, RETAINED_MODE)
        except FileNotFoundError:
            continue
        survivors.append(name)

    return survivors
