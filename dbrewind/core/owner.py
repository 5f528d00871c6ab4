"""
Rewind core. Do not implement beyond this file's responsibilities.
Owning application control - the restore needs exclusive access to the tree.
"""

from typing import Iterable, List

import psutil

from .config import OWNER_TIMEOUT_SEC
from util.logging import logger


class OwnerProcessError(Exception):
    """The owning application could not be stopped."""
    pass


def find_owner_processes(names: Iterable[str]) -> List[psutil.Process]:
    """Running processes whose name matches one of names (case-insensitive)."""
    wanted = {name.lower() for name in names}
    if not wanted:
        return []

    # process_iter skips processes that vanish and leaves denied attrs as None
    return [
        proc for proc in psutil.process_iter(["name"])
        if (proc.info.get("name") or "").lower() in wanted
    ]


def stop_owner_processes(names: Iterable[str], timeout: int = OWNER_TIMEOUT_SEC, preview: bool = False) -> List[int]:
    """
    Terminate the owning application, killing it if it outlives timeout.

    Returns:
        List[int]: pids that were (or in preview, would be) stopped

    Raises:
        OwnerProcessError: If a process survives the kill
    """
    procs = find_owner_processes(names)
    pids = [proc.pid for proc in procs]

    if preview or not procs:
        for proc in procs:
            logger.log_owner_stop(proc.info.get("name", ""), proc.pid, "preview")
        return pids

    for proc in procs:
        try:
            proc.terminate()
            logger.log_owner_stop(proc.info.get("name", ""), proc.pid, "terminating")
        except psutil.NoSuchProcess:
            pass

    _gone, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
            logger.log_owner_stop(proc.info.get("name", ""), proc.pid, "killed")
        except psutil.NoSuchProcess:
            pass

    if alive:
        _gone, survivors = psutil.wait_procs(alive, timeout=timeout)
        if survivors:
            raise OwnerProcessError(
                f"Owning processes still running: {[proc.pid for proc in survivors]}"
            )

    return pids
