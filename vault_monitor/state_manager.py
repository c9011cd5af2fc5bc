"""
State Management for the Vault Monitor.
Persists the vault records and the last processed block to a JSON snapshot file.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from .api.models import MonitorState, VaultRecord
from .exceptions import PersistenceError

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    JSON-file backed store of the monitor state.

    Every write persists the full snapshot (all vault records plus the block
    height) in one atomic replace, so the height on disk never runs ahead of
    the records it depends on. The previous file is kept as `<name>.backup`.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.backup_path = self.path.with_name(self.path.name + ".backup")
        self.temp_path = self.path.with_name(self.path.name + ".tmp")
        self._state = MonitorState()

    @property
    def last_processed_block(self) -> int:
        return self._state.lastProcessedBlock

    def ensure_writable(self) -> None:
        """
        Make sure the state directory exists and is writable.

        Raises:
            PersistenceError: If the directory cannot be created or written
        """
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create state directory {directory}: {e}") from e
        if not os.access(directory, os.W_OK):
            raise PersistenceError(f"State directory {directory} is not writable")

    def _read(self, path: Path) -> MonitorState:
        with open(path, "r") as f:
            return MonitorState.model_validate(json.load(f))

    def load(self) -> MonitorState:
        """
        Load state from the snapshot file.

        Falls back to the backup copy when the main file is missing or cannot be
        parsed, and to an empty state when neither is usable.

        Returns:
            Copy of the loaded state
        """
        for candidate in (self.path, self.backup_path):
            if not candidate.exists():
                continue
            try:
                self._state = self._read(candidate)
                logger.info(
                    f"Loaded state from {candidate}: {len(self._state.vaults)} vaults, "
                    f"last processed block {self._state.lastProcessedBlock}"
                )
                return self._state.model_copy(deep=True)
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.error(f"Failed to parse state file {candidate}: {e}")

        if self.path.exists() or self.backup_path.exists():
            logger.error("No usable state file found, starting from an empty state")
        else:
            logger.info(f"State file not found at {self.path}, starting from an empty state")
        self._state = MonitorState()
        return self._state.model_copy(deep=True)

    def _write(self, state: MonitorState) -> None:
        """Write the snapshot atomically, keeping the previous file as backup."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.temp_path, "w") as f:
                json.dump(state.model_dump(mode="json"), f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            if self.path.exists():
                os.replace(self.path, self.backup_path)

            # Atomic rename
            os.replace(self.temp_path, self.path)
            logger.debug(f"Saved state to {self.path} at block {state.lastProcessedBlock}")
        except OSError as e:
            logger.error(f"Failed to save state to {self.path}: {e}")
            raise PersistenceError(f"Failed to save state to {self.path}: {e}") from e

    def save(self, state: MonitorState) -> None:
        """
        Persist a full state snapshot.

        The block height is clamped so it never goes below the stored one. On a
        failed write the vault records are kept in memory (the next successful
        write includes them) but the height is not advanced.

        Raises:
            PersistenceError: If the file cannot be written
        """
        height = state.lastProcessedBlock
        if height < self._state.lastProcessedBlock:
            logger.warning(
                f"Refusing to move last processed block back from "
                f"{self._state.lastProcessedBlock} to {height}"
            )
            height = self._state.lastProcessedBlock

        vaults = state.model_copy(deep=True).vaults
        self._state.vaults = vaults
        self._write(MonitorState(lastProcessedBlock=height, vaults=vaults))
        self._state.lastProcessedBlock = height

    def get_vault(self, address: str) -> Optional[VaultRecord]:
        record = self._state.vaults.get(address.lower())
        return record.model_copy() if record else None

    def all_vaults(self) -> List[VaultRecord]:
        return [record.model_copy() for record in self._state.vaults.values()]

    def upsert_vault(self, record: VaultRecord) -> None:
        """
        Insert or replace a vault record and persist it.

        Raises:
            PersistenceError: If the file cannot be written (the record is kept in memory)
        """
        self._state.vaults[record.key] = record.model_copy()
        self._write(self._state)

    def patch_vault(self, address: str, only_missing: bool = False, **fields: Any) -> Optional[VaultRecord]:
        """
        Update some fields of an existing vault record and persist it.

        Args:
            address: Vault address (case-insensitive)
            only_missing: Only set fields that are currently None
            **fields: Field values to set

        Returns:
            The updated record, or None if the vault is not stored
        """
        key = address.lower()
        record = self._state.vaults.get(key)
        if record is None:
            logger.debug(f"Ignoring patch for unknown vault {address}")
            return None

        if only_missing:
            fields = {
                name: value for name, value in fields.items()
                if value is not None and getattr(record, name, None) is None
            }
        if not fields:
            return record.model_copy()

        data: Dict[str, Any] = record.model_dump()
        data.update(fields)
        updated = VaultRecord.model_validate(data)
        self._state.vaults[key] = updated
        self._write(self._state)
        return updated.model_copy()

    def advance(self, block: int) -> int:
        """
        Persist a new last processed block together with all records.

        Returns:
            The stored height (never lower than before)

        Raises:
            PersistenceError: If the write fails; the in-memory height is unchanged
        """
        height = max(block, self._state.lastProcessedBlock)
        if block < self._state.lastProcessedBlock:
            logger.warning(f"Ignoring attempt to move last processed block back to {block}")

        candidate = MonitorState(lastProcessedBlock=height, vaults=self._state.vaults)
        self._write(candidate)
        self._state.lastProcessedBlock = height
        return height
