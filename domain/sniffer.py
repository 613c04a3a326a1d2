import filetype  # pyright: ignore[reportMissingTypeStubs]

from domain.models import MediaType


def classify(data: bytes) -> MediaType | None:
    """True media type of `data` from its magic bytes, or None if unknown.

    Extensions and declared types are never consulted.
    """
    if not data:
        return None
    kind = filetype.guess(data)
    if kind is None:
        return None
    return MediaType(mime=kind.mime, extension=kind.extension)
