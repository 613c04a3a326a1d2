"""Durable record of in-flight media mutations.

An intent is written before the ledger changes and settled once the store has
caught up. Whatever is still on disk at startup belongs to an operation that
never finished and has to be reconciled.
"""

from dataclasses import asdict, dataclass
import json
import logging
from pathlib import Path
import time

import aiofiles
import aiofiles.os


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Intent:
    entity_id: str
    operation: str
    filenames: list[str]
    created: float


class IntentLog:
    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, entity_id: str) -> Path:
        return self.root / f"{entity_id}.json"

    async def record(self, entity_id: str, operation: str, filenames: list[str]) -> Intent:
        intent = Intent(
            entity_id=entity_id,
            operation=operation,
            filenames=list(filenames),
            created=time.time(),
        )
        await aiofiles.os.makedirs(self.root, exist_ok=True)
        tmp = self._path(entity_id).with_suffix(".tmp")
        async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
            await f.write(json.dumps(asdict(intent)))
        await aiofiles.os.replace(tmp, self._path(entity_id))
        return intent

    async def get(self, entity_id: str) -> Intent | None:
        try:
            async with aiofiles.open(self._path(entity_id), encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        try:
            return Intent(**json.loads(raw))
        except (ValueError, TypeError):
            # A torn write still marks the entity as needing reconciliation.
            logger.warning("Unreadable intent for %s", entity_id)
            return Intent(entity_id=entity_id, operation="unknown", filenames=[], created=0.0)

    async def settle(self, entity_id: str) -> None:
        try:
            await aiofiles.os.remove(self._path(entity_id))
        except FileNotFoundError:
            pass

    async def pending(self) -> list[Intent]:
        try:
            names = await aiofiles.os.listdir(self.root)
        except FileNotFoundError:
            return []
        intents: list[Intent] = []
        for name in sorted(names):
            if not name.endswith(".json"):
                continue
            intent = await self.get(name.removesuffix(".json"))
            if intent is not None:
                intents.append(intent)
        return intents
