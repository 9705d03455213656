import logging
import os
import re
from typing import Optional

from rs2bq.errors import LockError
from rs2bq.logs import ensure_directory, now_eastern_naive
from rs2bq.naming import RunIdentity

logger = logging.getLogger(__name__)


def lock_file_name(identity: RunIdentity) -> str:
    """One lock per source table, whatever prefix segment the run writes under."""
    parts = (identity.database, identity.schema, identity.table)
    return "__".join(re.sub(r"[^A-Za-z0-9_.-]+", "_", part or "") for part in parts) + ".lock"


class RunLock:
    """
    Exclusive claim on a table's staging prefix for the length of one run.

    Two runs for the same table would unload into, transfer from and clean up
    the same object prefix, so the second one is refused. The lock file records
    the holder's run id and prefix so a stale lock can be traced to its run.
    """

    def __init__(self, lock_dir: str, identity: RunIdentity, run_id: Optional[str] = None):
        self.identity = identity
        self.run_id = run_id
        self.path = os.path.join(lock_dir, lock_file_name(identity))
        self.held = False

    def holder(self) -> str:
        try:
            with open(self.path, "r", encoding="utf-8") as file_handle:
                return file_handle.read().strip()
        except OSError:
            return ""

    def acquire(self) -> None:
        ensure_directory(os.path.dirname(self.path))
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise LockError("Prefix {} is in use by another run ({}): {}".format(
                self.identity.prefix, self.holder() or "holder unknown", self.path))
        with os.fdopen(fd, "w") as file_handle:
            file_handle.write("run_id={} prefix={} pid={} time={}\n".format(
                self.run_id, self.identity.prefix, os.getpid(), now_eastern_naive().isoformat()))
        self.held = True
        logger.debug("[LOCK] acquired %s for %s", self.path, self.identity.prefix)

    def release(self) -> None:
        if not self.held:
            return
        self.held = False
        try:
            os.remove(self.path)
        except FileNotFoundError:
            logger.warning("[LOCK] lock %s vanished before release", self.path)
        except OSError as exc:
            logger.warning("[LOCK] failed to remove lock %s err=%s", self.path, exc)
        else:
            logger.debug("[LOCK] released %s", self.path)

