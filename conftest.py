"""Shared pytest fixtures for the COA engine tests."""

import json
from datetime import date
from pathlib import Path

import pytest

from coa_engine.assignment import AssignmentService, CompatibilityMatrix
from coa_engine.merger import TemplateMerger
from coa_engine.templates import TemplateStore
from coa_engine.validation import ValidationEngine
from core.audit.history import InMemoryAssignmentStore


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def account(code, name, normal_balance, required=False, **extra):
    return {"code": code, "name": name, "normal_balance": normal_balance, "required": required, **extra}


FIXTURE_BASE = {
    "id": "universal_base",
    "name": "Fixture Base",
    "version": "2.0.0",
    "account_structure": {
        "assets": {
            "range": "1000000-1999999",
            "current_assets": {
                "accounts": [
                    account("1100000", "Cash", "debit", True),
                    account("1200000", "Receivables", "debit", True),
                ],
                "bank": {
                    "accounts": [account("1120000", "Bank", "debit")],
                },
            },
        },
        "liabilities": {
            "current_liabilities": {
                "accounts": [
                    account("2100000", "Payables", "credit", True),
                    account("2300000", "Taxes Payable", "credit"),
                ],
            },
        },
        "equity": {
            "accounts": [
                account("3100000", "Capital", "credit", True),
                account("3300000", "Retained Earnings", "credit", True),
            ],
        },
        "revenue": {
            "operating_revenue": {
                "accounts": [account("4100000", "Sales", "credit", True)],
            },
        },
        "expenses": {
            "cost_of_sales": {
                "accounts": [account("5000000", "COGS", "debit", True)],
            },
        },
    },
}

FIXTURE_COUNTRY = {
    "id": "country_testland",
    "name": "Testland",
    "version": "1.0.0",
    "regulatory_requirements": ["TLT"],
    "country_specific_accounts": [
        account("2310000", "Testland Tax Output", "credit", regulatory_requirement="TLT",
                type="liabilities", subtype="current_liabilities"),
        account("4100000", "Testland Sales", "credit", True, type="revenue"),
        account("2300000", "Duties and Taxes", "credit", type="liabilities"),
    ],
}

FIXTURE_INDUSTRY = {
    "id": "industry_bakery",
    "name": "Bakery",
    "version": "1.0.0",
    "industry_specific_accounts": {
        "revenue": [
            account("4100000", "Bakery Sales", "credit", True, type="revenue"),
            account("4110000", "Bread Sales", "credit", type="revenue"),
        ],
        "costs": [
            account("5010000", "Flour Cost", "debit", type="expenses"),
        ],
    },
}


@pytest.fixture
def template_dir(tmp_path) -> Path:
    """A small template tree: base, one country (testland), one industry (bakery)."""
    root = tmp_path / "templates"
    write_json(root / "base" / "universal-base.json", FIXTURE_BASE)
    write_json(root / "countries" / "testland.json", FIXTURE_COUNTRY)
    write_json(root / "industries" / "bakery.json", FIXTURE_INDUSTRY)
    return root


@pytest.fixture
def fixture_store(template_dir) -> TemplateStore:
    return TemplateStore(template_dir)


@pytest.fixture
def store() -> TemplateStore:
    """Store over the packaged templates."""
    return TemplateStore()


@pytest.fixture
def engine(store) -> ValidationEngine:
    return ValidationEngine(store, today=lambda: date(2026, 3, 15))


@pytest.fixture
def repository() -> InMemoryAssignmentStore:
    return InMemoryAssignmentStore()


@pytest.fixture
def service(store, engine, repository) -> AssignmentService:
    return AssignmentService(
        template_store=store,
        merger=engine.merger,
        validation_engine=engine,
        repository=repository,
        compatibility=CompatibilityMatrix(),
    )


@pytest.fixture
def fixture_merger(fixture_store) -> TemplateMerger:
    return TemplateMerger(fixture_store)
