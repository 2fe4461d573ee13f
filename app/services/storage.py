"""Per-student storage area provisioning.

Called after an enrollment commits.  Provisioning is best-effort: callers
log failures and carry on, and nothing is rolled back because of them.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)


@runtime_checkable
class StorageProvisioner(Protocol):
    async def provision_student_area(self, student_id: str, area: str) -> str:
        """Create (idempotently) the area and return its location."""
        ...


class LocalStorageProvisioner:
    """Folders under STORAGE_ROOT: ``<root>/students/<student_id>/<area>``."""

    def __init__(self, root: Path) -> None:
        self._root = root

    async def provision_student_area(self, student_id: str, area: str) -> str:
        path = self._root / "students" / student_id / area
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        return str(path)


class InMemoryStorageProvisioner:
    def __init__(self) -> None:
        self._areas: set[str] = set()

    async def provision_student_area(self, student_id: str, area: str) -> str:
        location = f"memory://students/{student_id}/{area}"
        self._areas.add(location)
        return location


if SETTINGS.storage_root:
    storage_provisioner: StorageProvisioner = LocalStorageProvisioner(
        Path(SETTINGS.storage_root)
    )
else:
    storage_provisioner = InMemoryStorageProvisioner()
