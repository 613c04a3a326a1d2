"""Attaching uploaded files to recipes and users.

The ledger (the entity's `media` list) is the single source of truth for which
files exist; the store holds their bytes under `<media_dir>/<entity id>/`.
Every mutation runs under the entity's lock and updates the ledger before the
store, with an intent written first so that an interrupted operation can be
reconciled later.
"""

import asyncio
import contextlib
import logging
from pathlib import Path
import re
import shutil
from typing import AsyncIterator, Awaitable, Callable, Iterable, Protocol, TypeVar

import aiofiles
import aiofiles.os

from ajolt import off_thread
from domain.errors import (
    IOFault,
    MediaError,
    NotFound,
    StateConflict,
    StateMissing,
    UnsupportedType,
)
from domain.intents import IntentLog
from domain.models import MediaType, RawFile
from domain.sanitizer import sanitize
from domain.sniffer import classify
from domain.uploads import stage


logger = logging.getLogger(__name__)


T = TypeVar("T")


ENTITY_ID = re.compile(r"^[0-9a-f]{32}$")


class Entity(Protocol):
    @property
    def media(self) -> list[str]: ...

    @property
    def owner(self) -> str: ...


class Entities(Protocol):
    async def get(self, id: str) -> Entity: ...

    async def set_media(self, id: str, filenames: list[str]) -> None: ...

    async def get_owner(self, id: str) -> str: ...


def is_safe_basename(name: str) -> bool:
    if not name or name != Path(name).name:
        return False
    return "/" not in name and "\\" not in name and name not in (".", "..")


class EntityLocks:
    """One asyncio lock per entity ID, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, entity_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(entity_id, asyncio.Lock())
        self._users[entity_id] = self._users.get(entity_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[entity_id] -= 1
            if not self._users[entity_id]:
                del self._users[entity_id]
                del self._locks[entity_id]

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._locks


class MediaLedger:
    def __init__(self, entities: Entities) -> None:
        self.entities = entities

    async def state(self, entity_id: str) -> list[str]:
        entity = await self.entities.get(entity_id)
        return list(entity.media)

    async def record(self, entity_id: str, filenames: list[str]) -> None:
        try:
            await self.entities.set_media(entity_id, list(filenames))
        except MediaError:
            raise
        except Exception as e:
            raise IOFault(f"Could not record media for {entity_id}.") from e


class MediaStore:
    def __init__(self, root: Path, *, timeout: float | None = None) -> None:
        self.root = root
        self.timeout = timeout

    def directory(self, entity_id: str) -> Path:
        if not ENTITY_ID.match(entity_id):
            raise NotFound(f"No entity {entity_id!r}.")
        return self.root / entity_id

    async def _bounded(self, what: str, op: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(op, self.timeout)
        except TimeoutError as e:
            # TimeoutError is an OSError, so it goes first.
            raise IOFault(f"Timed out while {what}.") from e
        except OSError as e:
            raise IOFault(f"Failed while {what}: {e.strerror or e}.") from e

    async def listing(self, entity_id: str) -> set[str]:
        directory = self.directory(entity_id)
        try:
            names = await aiofiles.os.listdir(directory)
        except FileNotFoundError:
            return set()
        return {n for n in names if await aiofiles.os.path.isfile(directory / n)}

    async def _move_in(self, directory: Path, holding: Path, filenames: list[str]) -> None:
        await aiofiles.os.makedirs(directory, exist_ok=True)
        for name in filenames:
            await aiofiles.os.replace(holding / name, directory / name)

    async def write(self, entity_id: str, holding: Path, filenames: list[str]) -> None:
        directory = self.directory(entity_id)
        await self._bounded(
            f"writing media for {entity_id}",
            self._move_in(directory, holding, filenames),
        )

    async def _unlink_all(self, directory: Path, names: Iterable[str]) -> None:
        for name in names:
            try:
                await aiofiles.os.remove(directory / name)
            except FileNotFoundError:
                pass

    async def delete(self, entity_id: str, filenames: Iterable[str]) -> None:
        directory = self.directory(entity_id)
        await self._bounded(
            f"deleting media for {entity_id}",
            self._unlink_all(directory, filenames),
        )

    async def clear(self, entity_id: str) -> None:
        await self.delete(entity_id, await self.listing(entity_id))

    async def discard(self, entity_id: str) -> None:
        directory = self.directory(entity_id)
        await self._bounded(
            f"discarding media for {entity_id}",
            off_thread(shutil.rmtree, directory, True),
        )

    async def read(self, entity_id: str, filename: str) -> bytes:
        path = self.directory(entity_id) / filename
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise NotFound(f"No media {filename!r}.") from e


class MediaService:
    """Attach, replace and remove the media of one kind of entity."""

    def __init__(
        self,
        *,
        entities: Entities,
        store: MediaStore,
        staging: Path,
        intents: IntentLog,
        allowed: re.Pattern[str] | str,
        max_files: int | None = None,
        locks: EntityLocks | None = None,
    ) -> None:
        self.ledger = MediaLedger(entities)
        self.store = store
        self.staging = staging
        self.intents = intents
        self.allowed = re.compile(allowed) if isinstance(allowed, str) else allowed
        self.max_files = max_files
        self.locks = EntityLocks() if locks is None else locks

    def holding(self, entity_id: str) -> Path:
        return self.staging / self.store.directory(entity_id).name

    async def _drop_holding(self, entity_id: str) -> None:
        await off_thread(shutil.rmtree, self.holding(entity_id), True)

    async def attach(self, entity_id: str, files: list[RawFile]) -> list[str]:
        return await self._upload(entity_id, files, operation="attach")

    async def replace(self, entity_id: str, files: list[RawFile]) -> list[str]:
        return await self._upload(entity_id, files, operation="replace")

    async def _upload(self, entity_id: str, files: list[RawFile], *, operation: str) -> list[str]:
        # Also rejects malformed IDs before anything touches the disk.
        holding = self.holding(entity_id)
        async with self.locks.hold(entity_id):
            await self._recover(entity_id)
            current = await self.ledger.state(entity_id)
            if operation == "attach" and current:
                raise StateConflict()
            if operation == "replace" and not current:
                raise StateMissing()

            keep_holding = False
            try:
                await self._drop_holding(entity_id)
                report = await stage(holding, files)
                for fault in report.faults:
                    logger.warning("Not staged: %s (%s)", fault.claimed_name, fault.reason)
                kept = set(await sanitize(holding, self.allowed))
                names = [n for n in report.names if n in kept]
                if not names:
                    raise UnsupportedType("No uploaded file has an allowed content type.")
                if self.max_files is not None:
                    names = names[: self.max_files]

                await self.intents.record(entity_id, operation, names)
                await self.ledger.record(entity_id, names)
                keep_holding = True
                if operation == "replace":
                    await self.store.clear(entity_id)
                await self.store.write(entity_id, holding, names)
                await self.intents.settle(entity_id)
                keep_holding = False
            finally:
                # An unsettled intent still needs the staged files to roll forward.
                if not keep_holding:
                    await self._drop_holding(entity_id)

        logger.info("%s %s: %s", operation.capitalize(), entity_id, names)
        return names

    async def remove(self, entity_id: str) -> None:
        self.store.directory(entity_id)
        async with self.locks.hold(entity_id):
            await self._recover(entity_id)
            if not await self.ledger.state(entity_id):
                raise StateMissing()
            await self.intents.record(entity_id, "remove", [])
            await self.ledger.record(entity_id, [])
            await self.store.clear(entity_id)
            await self.intents.settle(entity_id)
        logger.info("Removed media of %s", entity_id)

    async def discard(
        self,
        entity_id: str,
        forget: Callable[[str], Awaitable[None]],
    ) -> None:
        """Delete the entity record via `forget`, then its media directory."""
        self.store.directory(entity_id)
        async with self.locks.hold(entity_id):
            await self.intents.record(entity_id, "discard", [])
            try:
                await forget(entity_id)
            except NotFound:
                await self.intents.settle(entity_id)
                raise
            await self.store.discard(entity_id)
            await self._drop_holding(entity_id)
            await self.intents.settle(entity_id)

    async def fetch(self, entity_id: str, filename: str) -> tuple[bytes, MediaType | None]:
        if not is_safe_basename(filename):
            raise NotFound(f"No media {filename!r}.")
        if filename not in await self.ledger.state(entity_id):
            raise NotFound(f"No media {filename!r}.")
        data = await self.store.read(entity_id, filename)
        return data, classify(data)

    async def _recover(self, entity_id: str) -> None:
        if await self.intents.get(entity_id) is not None:
            await self._reconcile(entity_id)

    async def _reconcile(self, entity_id: str) -> None:
        """Bring ledger and store back in line after an interrupted operation.

        Ledger entries whose files never reached the store are rolled forward
        from the holding location when possible and dropped otherwise; files
        the ledger does not list are deleted.
        """
        holding = self.holding(entity_id)
        try:
            ledger = await self.ledger.state(entity_id)
        except NotFound:
            logger.warning("Discarding media of vanished entity %s", entity_id)
            await self.store.discard(entity_id)
            await self._drop_holding(entity_id)
            await self.intents.settle(entity_id)
            return

        on_disk = await self.store.listing(entity_id)
        kept: list[str] = []
        for name in ledger:
            if name not in on_disk and await aiofiles.os.path.isfile(holding / name):
                await self.store.write(entity_id, holding, [name])
                on_disk.add(name)
            if name in on_disk:
                kept.append(name)

        await self.store.delete(entity_id, on_disk - set(kept))
        if kept != ledger:
            await self.ledger.record(entity_id, kept)
        await self._drop_holding(entity_id)
        await self.intents.settle(entity_id)
        logger.warning("Reconciled %s: %s", entity_id, kept)

    async def reconcile_pending(self) -> int:
        """Reconcile every operation left unfinished by a previous run."""
        intents = await self.intents.pending()
        for intent in intents:
            async with self.locks.hold(intent.entity_id):
                await self._reconcile(intent.entity_id)
        return len(intents)
