"""Restore ownership of build output to the invoking user.

The builder runs with full privileges and leaves root-owned files behind.
When the tool itself was started through sudo, ownership is handed back to
the sudo caller.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def invoking_user_ids() -> tuple[int, int] | None:
    """Return (uid, gid) of the sudo caller, or None when not under sudo."""
    uid = os.environ.get("SUDO_UID")
    gid = os.environ.get("SUDO_GID")
    if not uid or not gid:
        return None
    try:
        return int(uid), int(gid)
    except ValueError:
        logger.warning("Ignoring invalid SUDO_UID/SUDO_GID: %s/%s", uid, gid)
        return None


def give_back_user_rights(path: Path) -> int:
    """Recursively chown ``path`` to the sudo caller.

    Symlinks are changed themselves, never followed.

    Args:
        path: Directory (or file) to hand back.

    Returns:
        Number of entries changed (0 when not under sudo or path is missing).

    Raises:
        OSError: If an entry cannot be changed.
    """
    ids = invoking_user_ids()
    if ids is None or not os.path.lexists(path):
        return 0
    uid, gid = ids

    changed = 0
    os.lchown(path, uid, gid)
    changed += 1
    for root, dirs, files in os.walk(path):
        for entry in dirs + files:
            os.lchown(os.path.join(root, entry), uid, gid)
            changed += 1
    logger.debug("Gave back %d entries under %s to %d:%d", changed, path, uid, gid)
    return changed


__all__ = ["give_back_user_rights", "invoking_user_ids"]
