"""
Static asset serving for the browser client.

Paths come straight from the URL, so every lookup is normalized and must
resolve inside the static root.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import HTTPException, status
from fastapi.responses import FileResponse

from shared.config.logging import get_logger

logger = get_logger(__name__)

HOME_PAGE = Path("html") / "home.html"


def resolve_static_path(static_root: Path, *parts: str) -> Path | None:
    """
    Resolve ``parts`` under ``static_root``.

    Returns:
        The resolved file path, or None if it escapes the root or is not a file.
    """
    root = static_root.resolve()
    candidate = root.joinpath(*parts).resolve()
    if not candidate.is_relative_to(root):
        logger.warning("Static path outside root rejected", path="/".join(parts))
        return None
    if not candidate.is_file():
        return None
    return candidate


def static_file_response(static_root: Path, *parts: str) -> FileResponse:
    """
    FileResponse for an asset under ``static_root``.

    Raises:
        HTTPException: 404 if the file does not exist or escapes the root.
    """
    path = resolve_static_path(static_root, *parts)
    if path is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    return FileResponse(path)
