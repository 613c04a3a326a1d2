from pathlib import Path
from types import SimpleNamespace

import pytest

from domain.intents import IntentLog
from domain.media import MediaService, MediaStore

from doubles import GIF, JPEG, PNG, TEXT, MemoryEntities, fake_png, jpeg, png


@pytest.fixture
def entities() -> MemoryEntities:
    return MemoryEntities()


@pytest.fixture
def roots(tmp_path: Path) -> SimpleNamespace:
    return SimpleNamespace(
        media=tmp_path / "media",
        staging=tmp_path / "staging",
        intents=tmp_path / "intents",
    )


@pytest.fixture
def service(entities: MemoryEntities, roots: SimpleNamespace) -> MediaService:
    return MediaService(
        entities=entities,
        store=MediaStore(roots.media, timeout=5),
        staging=roots.staging,
        intents=IntentLog(roots.intents),
        allowed=r"image/(jpeg|png)",
    )


@pytest.fixture
def files() -> SimpleNamespace:
    return SimpleNamespace(png=png, jpeg=jpeg, fake_png=fake_png)


@pytest.fixture
def blobs() -> SimpleNamespace:
    return SimpleNamespace(png=PNG, jpeg=JPEG, gif=GIF, text=TEXT)
