"""COA assignment persistence and history.

Backends store the current configuration per organization together with an
append-only list of history records. Failures raise
AssignmentPersistenceError; callers decide how to report them.
"""

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from core.models.assignment import (
    ChangeType,
    CoaAssignmentHistory,
    OrganizationCoaConfig,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)


def _write_json(path: Path, data) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


class AssignmentPersistenceError(Exception):
    """Reading or writing a COA assignment failed."""

    def __init__(self, message: str, organization_id: Optional[str] = None):
        super().__init__(message)
        self.organization_id = organization_id


def create_history_record(
    new_config: OrganizationCoaConfig,
    previous_config: Optional[OrganizationCoaConfig] = None,
    accounts_affected: int = 0,
    custom_accounts_preserved: bool = True,
) -> CoaAssignmentHistory:
    """Create a history record for a configuration change."""
    return CoaAssignmentHistory(
        organization_id=new_config.organization_id,
        change_type=ChangeType.TEMPLATE_CHANGE if previous_config else ChangeType.INITIAL_ASSIGNMENT,
        previous_config=previous_config.snapshot() if previous_config else None,
        new_config=new_config.snapshot(),
        changed_by=new_config.assigned_by,
        accounts_affected=accounts_affected,
        custom_accounts_preserved=custom_accounts_preserved,
    )


class AssignmentRepository(ABC):
    """Abstract base class for assignment persistence backends."""

    @abstractmethod
    async def get_assignment(self, organization_id: str) -> Optional[OrganizationCoaConfig]:
        """Current configuration, or None if the organization has none."""
        pass

    @abstractmethod
    async def get_history(self, organization_id: str) -> List[CoaAssignmentHistory]:
        """History records, oldest first."""
        pass

    @abstractmethod
    async def save_assignment(
        self,
        config: OrganizationCoaConfig,
        history: CoaAssignmentHistory,
    ) -> OrganizationCoaConfig:
        """Persist a configuration and append its history record."""
        pass

    async def close(self) -> None:
        """Release resources."""
        pass


class InMemoryAssignmentStore(AssignmentRepository):
    """In-memory assignment backend for testing."""

    def __init__(self):
        self._configs: Dict[str, OrganizationCoaConfig] = {}
        self._history: Dict[str, List[CoaAssignmentHistory]] = {}

    async def get_assignment(self, organization_id: str) -> Optional[OrganizationCoaConfig]:
        config = self._configs.get(organization_id)
        return config.model_copy() if config else None

    async def get_history(self, organization_id: str) -> List[CoaAssignmentHistory]:
        return list(self._history.get(organization_id, []))

    async def save_assignment(
        self,
        config: OrganizationCoaConfig,
        history: CoaAssignmentHistory,
    ) -> OrganizationCoaConfig:
        self._configs[config.organization_id] = config.model_copy()
        self._history.setdefault(config.organization_id, []).append(history)
        return config

    def clear(self) -> None:
        """Clear all data (for testing)."""
        self._configs.clear()
        self._history.clear()


class JSONFileAssignmentStore(AssignmentRepository):
    """Assignment backend that stores JSON files on local disk.

    Layout:
        <base_path>/<organization_id>/config.json
        <base_path>/<organization_id>/history.json   (list, append-only)
    """

    def __init__(self, base_path: Path):
        """Initialize with base directory for assignment files."""
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _org_dir(self, organization_id: str) -> Path:
        safe = "".join(c for c in organization_id if c.isalnum() or c in "-_.")
        if not safe or safe in (".", ".."):
            raise AssignmentPersistenceError(f"Invalid organization id: {organization_id!r}", organization_id)
        return self.base_path / safe

    async def get_assignment(self, organization_id: str) -> Optional[OrganizationCoaConfig]:
        path = self._org_dir(organization_id) / "config.json"
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return OrganizationCoaConfig.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise AssignmentPersistenceError(f"Failed to read {path}: {e}", organization_id) from e

    async def get_history(self, organization_id: str) -> List[CoaAssignmentHistory]:
        path = self._org_dir(organization_id) / "history.json"
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                return [CoaAssignmentHistory.model_validate(item) for item in json.load(f)]
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise AssignmentPersistenceError(f"Failed to read {path}: {e}", organization_id) from e

    async def save_assignment(
        self,
        config: OrganizationCoaConfig,
        history: CoaAssignmentHistory,
    ) -> OrganizationCoaConfig:
        org_dir = self._org_dir(config.organization_id)
        history_path = org_dir / "history.json"
        config_path = org_dir / "config.json"

        history_tmp = history_path.with_name("history.json.tmp")
        config_tmp = config_path.with_name("config.json.tmp")
        previous_history: Optional[bytes] = None

        try:
            org_dir.mkdir(parents=True, exist_ok=True)

            records = []
            if history_path.exists():
                previous_history = history_path.read_bytes()
                records = json.loads(previous_history)
            records.append(history.model_dump(mode="json"))

            # Stage both files, then swap; a failed config swap rolls the history back
            _write_json(history_tmp, records)
            _write_json(config_tmp, config.model_dump(mode="json"))

            os.replace(history_tmp, history_path)
            try:
                os.replace(config_tmp, config_path)
            except OSError:
                self._restore_history(history_path, previous_history)
                raise
        except (OSError, json.JSONDecodeError) as e:
            raise AssignmentPersistenceError(
                f"Failed to save assignment for {config.organization_id}: {e}",
                config.organization_id,
            ) from e
        finally:
            for tmp in (history_tmp, config_tmp):
                if tmp.exists():
                    tmp.unlink()

        logger.debug(f"Saved COA assignment to {config_path}")
        return config

    @staticmethod
    def _restore_history(history_path: Path, previous: Optional[bytes]) -> None:
        if previous is None:
            history_path.unlink(missing_ok=True)
        else:
            restore_tmp = history_path.with_name("history.json.restore")
            restore_tmp.write_bytes(previous)
            os.replace(restore_tmp, history_path)
        logger.warning(f"Rolled back {history_path} after a failed save")
