from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

# Override per environment:
#   CERTIFICATE_STORAGE_DIR=/var/lib/trainportal/certificates
def storage_root() -> Path:
    return Path(os.getenv("CERTIFICATE_STORAGE_DIR", "uploads/certificates")).resolve()


def _resolve(path: str) -> Optional[Path]:
    root = storage_root()
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if resolved != root and root not in resolved.parents:
        return None
    return resolved


def release_certificate_file(path: Optional[str]) -> bool:
    """
    Delete a stored certificate file. Returns True if a file was removed.

    Paths outside the storage root are refused; missing files are not an error.
    """
    if not path:
        return False
    resolved = _resolve(path)
    if resolved is None:
        logger.warning("Refusing to release file outside certificate storage", extra={"file_path": path})
        return False
    if not resolved.exists():
        return False
    resolved.unlink()
    return True


def release_certificate_files(paths: Iterable[Optional[str]]) -> int:
    released = 0
    for path in paths:
        try:
            if release_certificate_file(path):
                released += 1
        except OSError:
            logger.exception("Failed to release certificate file", extra={"file_path": path})
    return released
