from __future__ import annotations

import logging
import stat as stat_module
from typing import Any

from core.storage.errors import TransferError

logger = logging.getLogger(__name__)


def _is_directory(sftp: Any, path: str) -> bool | None:
    """True/False for an existing entry, None when nothing is there."""
    try:
        attrs = sftp.stat(path)
    except IOError:
        return None
    mode = getattr(attrs, "st_mode", None)
    if mode is None:
        return True
    return stat_module.S_ISDIR(mode)


def ensure_remote_directory(sftp: Any, dir_path: str) -> list[str]:
    """Create every missing segment of ``dir_path`` on an open SFTP session.

    Safe to call on every upload. A mkdir that fails because a concurrent
    caller created the segment first counts as success. Returns the segments
    this call created.
    """
    created: list[str] = []
    current = ""
    for part in (segment for segment in dir_path.split("/") if segment):
        current = f"{current}/{part}" if current else part
        state = _is_directory(sftp, current)
        if state is True:
            continue
        if state is False:
            raise TransferError("A file occupies a directory segment", operation="provision", target=current)

        try:
            sftp.mkdir(current)
        except IOError as err:
            if _is_directory(sftp, current):
                logger.debug("Directory %s appeared concurrently", current)
                continue
            raise TransferError(
                "Could not create remote directory",
                operation="provision",
                target=current,
            ) from err
        created.append(current)
        logger.info("Created remote directory %s", current)
    return created
