"""
Registry store: loading, saving and crash-safe file writes.
[CTX:PBI-1:1-7:STORE]

The registry is a JSON5 document (JSON plus comments). Loading never raises:
a missing file, a parse error or a malformed document all degrade to an empty
registry, and :meth:`RegistryStore.read` reports which of those happened.

Writes go through :func:`atomic_write_text`, which is also used for every
resource file the identifier injector modifies.
"""
import asyncio
import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import json5

from .errors import RegistryWriteError
from .models import SCHEMA_VERSION, Registry
from .telemetry import EventKind, TelemetryRecorder, create_event, get_recorder
from .validation import is_valid_registry_data

logger = logging.getLogger(__name__)

REGISTRY_HEADER = (
    "// Project configurations for CCR agent system\n"
    "// Schema version: {version}\n"
    "// This file is safe to commit to git (contains no API keys)\n"
)


def read_text(path: str | Path) -> str:
    """Read a UTF-8 file without newline translation."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def atomic_write_text(
    path: str | Path,
    content: str,
    backup_suffix: str = ".backup",
    log: Optional[logging.Logger] = None,
) -> None:
    """
    Replace a file's content without ever leaving it truncated.

    An existing target is first copied to ``<target><backup_suffix>``. The new
    content is written to a temporary sibling and renamed over the target.
    The backup is removed on success; on failure the target is restored from
    it (best effort) and the original error is re-raised.

    Args:
        path: File to write
        content: New text content (written as UTF-8)
        backup_suffix: Suffix for the recovery copy
        log: Logger for non-fatal cleanup problems

    Raises:
        OSError: Whatever the underlying write raised
    """
    log = log or logger
    target = Path(path)
    backup = target.with_name(target.name + backup_suffix)
    backup_created = False

    try:
        if target.exists():
            shutil.copy2(target, backup)
            backup_created = True

        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            if backup_created:
                shutil.copymode(backup, tmp_name)
            else:
                os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, target)
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
    except BaseException:
        if backup_created:
            try:
                shutil.copy2(backup, target)
                backup.unlink()
            except OSError as restore_error:
                log.error(f"Failed to restore {target} from {backup}: {restore_error}")
        raise

    if backup_created:
        try:
            backup.unlink()
        except OSError:
            log.warning(f"Could not delete backup file: {backup}")


class LoadStatus(Enum):
    """How a registry load ended."""
    LOADED = "loaded"    # Parsed and shape-valid
    EMPTY = "empty"      # No registry file yet
    CORRUPT = "corrupt"  # Unreadable, unparsable or malformed; degraded to empty


@dataclass
class LoadResult:
    """
    Tagged outcome of :meth:`RegistryStore.read`.

    Attributes:
        status: Which case occurred
        registry: Registry to use; empty unless status is LOADED
        reason: Human-readable explanation for EMPTY/CORRUPT
    """
    status: LoadStatus
    registry: Registry
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is LoadStatus.LOADED


class RegistryStore:
    """
    Owns the registry file.

    All public methods are coroutines; blocking file access runs in a worker
    thread via :func:`asyncio.to_thread`.
    """

    def __init__(
        self,
        registry_path: str | Path,
        backup_suffix: str = ".backup",
        log: Optional[logging.Logger] = None,
        recorder: Optional[TelemetryRecorder] = None,
    ):
        """
        Initialize the store.

        Args:
            registry_path: Location of the registry document
            backup_suffix: Suffix used by the atomic write for recovery copies
            log: Logger (defaults to this module's logger)
            recorder: Telemetry recorder (defaults to the global recorder)
        """
        self.registry_path = Path(registry_path)
        self.backup_suffix = backup_suffix
        self.log = log or logger
        self._recorder = recorder

    @property
    def recorder(self) -> TelemetryRecorder:
        return self._recorder or get_recorder()

    async def read(self) -> LoadResult:
        """Load the registry, reporting whether it was loaded, empty or corrupt."""
        return await asyncio.to_thread(self._read_sync)

    async def load(self) -> Registry:
        """Load the registry, degrading to an empty one on any problem."""
        return (await self.read()).registry

    async def save(self, registry: Registry) -> None:
        """
        Persist the whole registry document.

        Raises:
            RegistryWriteError: If the registry directory is not writable
            OSError: If the write itself fails (target left intact)
        """
        await asyncio.to_thread(self._save_sync, registry)

    def _degraded(self, reason: str) -> LoadResult:
        self.recorder.record(
            create_event(EventKind.REGISTRY_DEGRADED, path=self.registry_path, detail=reason)
        )
        return LoadResult(LoadStatus.CORRUPT, Registry(), reason)

    def _read_sync(self) -> LoadResult:
        try:
            content = self.registry_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self.log.debug(f"projects.json not found at {self.registry_path}, agent system inactive")
            return LoadResult(LoadStatus.EMPTY, Registry(), "registry file not found")
        except OSError as e:
            self.log.error(f"Unexpected error loading {self.registry_path}: {e}")
            return self._degraded(str(e))

        try:
            data = json5.loads(content)
        except ValueError as e:
            self.log.warning(f"Failed to load {self.registry_path}: {e}")
            return self._degraded(f"parse error: {e}")

        if isinstance(data, dict):
            version = data.get("schemaVersion")
            if version is None:
                self.log.debug(
                    f"{self.registry_path} has no schema version (legacy format). "
                    f"Current version is {SCHEMA_VERSION}. Loading with backward compatibility."
                )
            elif version != SCHEMA_VERSION:
                self.log.warning(
                    f"Schema version mismatch: expected {SCHEMA_VERSION}, found {version}. "
                    f"Attempting compatibility mode."
                )

        if not is_valid_registry_data(data):
            self.log.warning(f"{self.registry_path} has invalid schema, returning empty projects")
            return self._degraded("invalid registry shape")

        try:
            registry = Registry.from_dict(data)
        except (KeyError, TypeError, AttributeError) as e:
            self.log.warning(f"{self.registry_path} has malformed project entries: {e}")
            return self._degraded(f"malformed project entry: {e}")

        return LoadResult(LoadStatus.LOADED, registry)

    def _ensure_writable_dir(self) -> Path:
        directory = self.registry_path.parent
        probe = directory
        while not probe.exists() and probe != probe.parent:
            probe = probe.parent
        if not os.access(probe, os.W_OK):
            raise RegistryWriteError(
                f"Cannot write to {self.registry_path}: directory is not writable"
            )
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def serialize(self, registry: Registry) -> str:
        """Render the registry document with its comment header."""
        body = json.dumps(registry.to_dict(SCHEMA_VERSION), indent=2, ensure_ascii=False)
        return REGISTRY_HEADER.format(version=SCHEMA_VERSION) + body + "\n"

    def _save_sync(self, registry: Registry) -> None:
        self._ensure_writable_dir()
        content = self.serialize(registry)
        atomic_write_text(self.registry_path, content, self.backup_suffix, log=self.log)
        registry.schema_version = SCHEMA_VERSION
        self.recorder.record(
            create_event(
                EventKind.REGISTRY_SAVED,
                path=self.registry_path,
                detail=f"{len(registry.projects)} project(s)",
            )
        )
