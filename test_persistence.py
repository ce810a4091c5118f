"""
Persistence and Settings Tests

Covers the configuration lifecycle, history records, the JSON file store
and environment-driven settings.
"""

import asyncio
import json
import logging

import pytest
from pydantic import ValidationError

from coa_engine.models import LockEnforcement
from coa_engine.settings import CoaSettings, DEFAULT_STORE_DIR, DEFAULT_TEMPLATE_DIR
from core.audit.history import (
    AssignmentPersistenceError,
    InMemoryAssignmentStore,
    JSONFileAssignmentStore,
    create_history_record,
)
from core.models.assignment import (
    AssignmentStatus,
    ChangeType,
    InvalidStatusTransition,
    OrganizationCoaConfig,
)


def make_config(**kwargs):
    data = {"organization_id": "org-1", "assigned_by": "u1", "country_template": "india"}
    data.update(kwargs)
    return OrganizationCoaConfig(**data)


class TestConfigLifecycle:
    """Status transitions on OrganizationCoaConfig."""

    def test_defaults(self):
        config = make_config()
        assert config.config_id.startswith("coa-")
        assert config.status == AssignmentStatus.NONE
        assert config.locked is False
        assert config.template_ids() == ["universal_base", "country_india"]

    def test_forward_path_to_locked(self):
        config = make_config()
        config.transition_to(AssignmentStatus.PENDING)
        config.transition_to(AssignmentStatus.ACTIVE)
        assert config.locked is False
        config.transition_to(AssignmentStatus.LOCKED)
        assert config.locked is True

    def test_active_can_go_back_to_pending(self):
        config = make_config()
        config.transition_to("pending").transition_to("active").transition_to("pending")
        assert config.status == AssignmentStatus.PENDING

    @pytest.mark.parametrize("path", [
        ["active"],
        ["pending", "locked"],
        ["pending", "active", "locked", "active"],
        ["pending", "active", "locked", "pending"],
    ])
    def test_invalid_transitions(self, path):
        config = make_config()
        with pytest.raises(InvalidStatusTransition):
            for status in path:
                config.transition_to(status)


class TestHistoryRecords:

    def test_initial_assignment(self):
        config = make_config()
        record = create_history_record(config, accounts_affected=42)
        assert record.change_type == ChangeType.INITIAL_ASSIGNMENT
        assert record.previous_config is None
        assert record.new_config["country_template"] == "india"
        assert record.accounts_affected == 42

    def test_template_change(self):
        old = make_config()
        new = make_config(industry_template="retail", assigned_by="u2")
        record = create_history_record(new, old, accounts_affected=5, custom_accounts_preserved=False)
        assert record.change_type == ChangeType.TEMPLATE_CHANGE
        assert record.previous_config["config_id"] == old.config_id
        assert record.changed_by == "u2"
        assert record.custom_accounts_preserved is False

    def test_records_are_immutable(self):
        record = create_history_record(make_config())
        with pytest.raises(ValidationError):
            record.accounts_affected = 1


class TestInMemoryStore:

    def test_returns_copies(self):
        store = InMemoryAssignmentStore()
        config = make_config()
        asyncio.run(store.save_assignment(config, create_history_record(config)))

        loaded = asyncio.run(store.get_assignment("org-1"))
        loaded.country_template = "usa"
        assert asyncio.run(store.get_assignment("org-1")).country_template == "india"

        store.clear()
        assert asyncio.run(store.get_assignment("org-1")) is None


class TestJSONFileStore:

    def test_round_trip_and_append_only_history(self, tmp_path):
        store = JSONFileAssignmentStore(tmp_path)
        first = make_config()
        asyncio.run(store.save_assignment(first, create_history_record(first)))
        second = make_config(country_template="usa")
        asyncio.run(store.save_assignment(second, create_history_record(second, first)))

        loaded = asyncio.run(store.get_assignment("org-1"))
        assert loaded.config_id == second.config_id
        assert loaded.country_template == "usa"

        history = asyncio.run(store.get_history("org-1"))
        assert [h.change_type for h in history] == [ChangeType.INITIAL_ASSIGNMENT, ChangeType.TEMPLATE_CHANGE]

        on_disk = json.loads((tmp_path / "org-1" / "history.json").read_text(encoding="utf-8"))
        assert len(on_disk) == 2

    def test_failed_config_write_leaves_no_history(self, tmp_path):
        store = JSONFileAssignmentStore(tmp_path)
        # A directory in place of config.json makes the final swap fail
        (tmp_path / "org-1" / "config.json").mkdir(parents=True)

        config = make_config()
        with pytest.raises(AssignmentPersistenceError):
            asyncio.run(store.save_assignment(config, create_history_record(config)))

        assert asyncio.run(store.get_history("org-1")) == []
        assert sorted(p.name for p in (tmp_path / "org-1").iterdir()) == ["config.json"]

    def test_failed_config_write_restores_previous_history(self, tmp_path):
        store = JSONFileAssignmentStore(tmp_path)
        first = make_config()
        first_record = create_history_record(first)
        asyncio.run(store.save_assignment(first, first_record))

        config_path = tmp_path / "org-1" / "config.json"
        config_path.unlink()
        config_path.mkdir()

        second = make_config(country_template="usa")
        with pytest.raises(AssignmentPersistenceError):
            asyncio.run(store.save_assignment(second, create_history_record(second, first)))

        history = asyncio.run(store.get_history("org-1"))
        assert [h.history_id for h in history] == [first_record.history_id]
        assert sorted(p.name for p in (tmp_path / "org-1").iterdir()) == ["config.json", "history.json"]

    def test_missing_organization(self, tmp_path):
        store = JSONFileAssignmentStore(tmp_path)
        assert asyncio.run(store.get_assignment("org-9")) is None
        assert asyncio.run(store.get_history("org-9")) == []

    def test_corrupted_files_raise(self, tmp_path):
        store = JSONFileAssignmentStore(tmp_path)
        (tmp_path / "org-1").mkdir()
        (tmp_path / "org-1" / "config.json").write_text("{broken", encoding="utf-8")
        (tmp_path / "org-1" / "history.json").write_text('[{"organization_id": "org-1"}]', encoding="utf-8")

        with pytest.raises(AssignmentPersistenceError) as exc:
            asyncio.run(store.get_assignment("org-1"))
        assert exc.value.organization_id == "org-1"
        with pytest.raises(AssignmentPersistenceError):
            asyncio.run(store.get_history("org-1"))

    def test_unsafe_organization_ids(self, tmp_path):
        store = JSONFileAssignmentStore(tmp_path)
        assert store._org_dir("../etc") == tmp_path / "..etc"
        with pytest.raises(AssignmentPersistenceError):
            store._org_dir("/")


class TestSettings:
    """CoaSettings.from_env with explicit mappings."""

    def test_defaults(self):
        settings = CoaSettings.from_env({})
        assert settings.template_dir == DEFAULT_TEMPLATE_DIR
        assert settings.assignment_store_dir == DEFAULT_STORE_DIR
        assert settings.assignment_backend == "file"
        assert settings.lock_enforcement == LockEnforcement.ADVISORY
        assert settings.log_level == logging.INFO
        assert settings.log_json is False

    def test_overrides(self, tmp_path):
        settings = CoaSettings.from_env({
            "COA_LOCK_ENFORCEMENT": "Enforced",
            "COA_ASSIGNMENT_BACKEND": "api",
            "COA_ASSIGNMENT_API_URL": "https://erp.example",
            "COA_ASSIGNMENT_API_TOKEN": "secret",
            "COA_TEMPLATE_DIR": str(tmp_path),
            "COA_LOG_LEVEL": "debug",
            "COA_LOG_JSON": "true",
        })
        assert settings.lock_enforcement == LockEnforcement.ENFORCED
        assert settings.assignment_backend == "api"
        assert settings.assignment_api_token == "secret"
        assert settings.template_dir == tmp_path
        assert settings.log_level == logging.DEBUG
        assert settings.log_json is True

    @pytest.mark.parametrize("environ", [
        {"COA_LOCK_ENFORCEMENT": "sometimes"},
        {"COA_ASSIGNMENT_BACKEND": "sqlite"},
        {"COA_ASSIGNMENT_BACKEND": "api"},
        {"COA_LOG_LEVEL": "LOUD"},
    ])
    def test_invalid_values_raise(self, environ):
        with pytest.raises(ValueError):
            CoaSettings.from_env(environ)
