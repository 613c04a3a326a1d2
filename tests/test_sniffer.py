from types import SimpleNamespace

import pytest

from domain.sniffer import classify


@pytest.mark.parametrize(
    "blob,mime",
    (
        ("png", "image/png"),
        ("jpeg", "image/jpeg"),
        ("gif", "image/gif"),
    ),
)
def test_classify_known_signatures(blobs: SimpleNamespace, blob: str, mime: str) -> None:
    got = classify(getattr(blobs, blob))
    assert got is not None
    assert got.mime == mime


@pytest.mark.parametrize("data", (b"", b"hello", b"just some text pretending to be a picture\n"))
def test_classify_unknown(data: bytes) -> None:
    assert classify(data) is None


def test_classify_ignores_what_the_bytes_claim_to_be(blobs: SimpleNamespace) -> None:
    # A name or declared type never reaches the sniffer; only the bytes do.
    assert classify(blobs.text + blobs.png) is None
    assert classify(blobs.png + blobs.text).mime == "image/png"  # type: ignore[union-attr]
