"""
Template Merger Tests

Covers account extraction, layer precedence, compatibility checks,
customizations and chart comparison.
"""

import itertools

import pytest

from coa_engine.merger import (
    TemplateMerger,
    compare_charts,
    extract_accounts,
    extract_layer_accounts,
)
from coa_engine.models import Account
from coa_engine.templates import TemplateLoadError, TemplateStore
from coa_engine.validation import ValidationEngine
from conftest import FIXTURE_BASE, FIXTURE_COUNTRY, write_json


class TestExtraction:
    """Recursive account extraction."""

    def test_extracts_accounts_at_any_depth(self):
        accounts = extract_accounts(FIXTURE_BASE["account_structure"])
        codes = sorted(a["code"] for a in accounts)
        assert codes == [
            "1100000", "1120000", "1200000", "2100000", "2300000",
            "3100000", "3300000", "4100000", "5000000",
        ]

    def test_type_and_subtype_are_inherited(self):
        by_code = {a["code"]: a for a in extract_accounts(FIXTURE_BASE["account_structure"])}
        assert by_code["1100000"]["type"] == "assets"
        assert by_code["1100000"]["subtype"] == "current_assets"
        # Nearest enclosing section wins
        assert by_code["1120000"]["subtype"] == "bank"
        assert by_code["3100000"]["type"] == "equity"
        assert "subtype" not in by_code["3100000"]

    def test_range_and_scalar_keys_are_ignored(self):
        structure = {"assets": {"range": {"accounts": [{"code": "9"}]}, "description": "x"}}
        assert extract_accounts(structure) == []

    def test_extraction_does_not_mutate_template(self):
        structure = {"assets": {"accounts": [{"code": "1100000"}]}}
        extract_accounts(structure)
        assert structure == {"assets": {"accounts": [{"code": "1100000"}]}}

    def test_layer_accounts_accept_list_or_mapping(self):
        as_list = extract_layer_accounts([{"code": "1"}], "country_specific")
        as_map = extract_layer_accounts({"a": [{"code": "1"}], "b": [{"code": "2"}]}, "industry_specific")
        assert as_list == [{"code": "1", "country_specific": True}]
        assert [a["code"] for a in as_map] == ["1", "2"]
        assert all(a["industry_specific"] for a in as_map)
        assert extract_layer_accounts(None, "country_specific") == []


class TestBuildMergedCoa:
    """Layer merge and precedence."""

    def test_base_only(self, fixture_merger):
        merged = fixture_merger.build_merged_coa()
        assert merged.layers == ["universal_base"]
        assert merged.metadata["total_accounts"] == 9
        assert merged.metadata["required_accounts"] == 7
        assert merged.overrides == []

    def test_layers_and_metadata(self, fixture_merger):
        merged = fixture_merger.build_merged_coa("testland", "bakery")

        assert merged.layers == ["universal_base", "country_testland", "industry_bakery"]
        assert merged.layer_counts == {"universal_base": 9, "country_testland": 3, "industry_bakery": 3}
        assert merged.metadata == {
            "total_accounts": 12,
            "required_accounts": 7,
            "country_specific_accounts": 3,
            "industry_specific_accounts": 3,
        }

    def test_accounts_sorted_and_unique(self, fixture_merger):
        codes = fixture_merger.build_merged_coa("testland", "bakery").codes()
        assert codes == sorted(codes)
        assert len(codes) == len(set(codes))

    def test_industry_overrides_country_overrides_base(self, fixture_merger):
        merged = fixture_merger.build_merged_coa("testland", "bakery")
        sales = merged.get("4100000")
        assert sales.name == "Bakery Sales"
        assert sales.industry_specific is True

        # Country-only override is kept when the industry does not touch the code
        assert merged.get("2300000").name == "Duties and Taxes"

        assert {"code": "4100000", "layer": "industry_bakery", "replaced_layer": "country_testland"} in merged.overrides

    def test_override_is_a_shallow_field_merge(self, fixture_merger):
        merged = fixture_merger.build_merged_coa("testland")
        duties = merged.get("2300000")
        assert duties.name == "Duties and Taxes"
        # Field from the base layer that the country did not redefine
        assert duties.subtype == "current_liabilities"

    def test_unresolved_layers_are_skipped(self, fixture_merger):
        merged = fixture_merger.build_merged_coa("atlantis", "bakery")
        assert merged.layers == ["universal_base", "industry_bakery"]

    def test_missing_base_propagates(self, tmp_path):
        merger = TemplateMerger(TemplateStore(tmp_path))
        with pytest.raises(TemplateLoadError):
            merger.build_merged_coa("india")


class TestCompatibility:
    """Compatibility report."""

    def test_override_warnings_but_no_conflicts(self, fixture_merger):
        report = fixture_merger.validate_template_compatibility("testland", "bakery")
        assert report.valid is True
        assert report.conflicts == []
        assert any("4100000" in w for w in report.warnings)

    def test_missing_layer_warning(self, fixture_merger):
        report = fixture_merger.validate_template_compatibility("atlantis", None)
        assert report.valid is True
        assert any("atlantis" in w for w in report.warnings)

    def test_duplicate_inside_layer_is_a_conflict(self, template_dir):
        data = dict(FIXTURE_COUNTRY)
        data["country_specific_accounts"] = [
            {"code": "2310000", "name": "Tax A", "normal_balance": "credit"},
            {"code": "2310000", "name": "Tax B", "normal_balance": "credit"},
        ]
        write_json(template_dir / "countries" / "dupland.json", data)

        report = TemplateMerger(TemplateStore(template_dir)).validate_template_compatibility("dupland")
        assert report.valid is False
        assert report.conflicts[0]["code"] == "2310000"
        assert report.conflicts[0]["layer"] == "country_dupland"
        assert report.conflicts[0]["occurrences"] == 2

    def test_all_packaged_combinations_merge_cleanly(self, store):
        merger = TemplateMerger(store)
        engine = ValidationEngine(store, merger=merger)
        countries = store.get_available_country_templates() + [None]
        industries = store.get_available_industry_templates() + [None]

        for country, industry in itertools.product(countries, industries):
            report = merger.validate_template_compatibility(country, industry)
            assert report.conflicts == [], (country, industry)

            merged = merger.build_merged_coa(country, industry)
            structure = engine.validate_account_structure(merged.accounts)
            assert structure.errors == [], (country, industry)
            assert structure.warnings == [], (country, industry)


class TestCustomizations:
    """Organization customizations on a merged chart."""

    def test_add_modify_exclude(self, fixture_merger):
        merged = fixture_merger.build_merged_coa("testland", "bakery")
        custom = fixture_merger.apply_customizations(
            merged,
            additional_accounts=[{"code": "5990000", "name": "Misc Expense", "normal_balance": "debit"}],
            account_modifications={"4110000": {"name": "Artisan Bread Sales"}},
            exclude_accounts=["1120000"],
        )

        assert custom.get("1120000") is None
        assert custom.get("5990000").custom is True
        assert custom.get("4110000").name == "Artisan Bread Sales"
        assert custom.layers[-1] == "custom"
        assert custom.layer_counts["custom"] == 2
        assert custom.metadata["customizations"]["excluded"] == ["1120000"]
        # Source chart untouched
        assert merged.get("1120000") is not None

    def test_required_accounts_are_protected(self, fixture_merger):
        merged = fixture_merger.build_merged_coa()
        custom = fixture_merger.apply_customizations(merged, exclude_accounts=["1100000", "9999999"])

        assert custom.get("1100000") is not None
        assert custom.metadata["customizations"]["protected"] == ["1100000"]
        assert custom.metadata["customizations"]["unknown_codes"] == ["9999999"]
        assert "custom" not in custom.layers


class TestCompareCharts:
    """Chart comparison."""

    def test_counts_and_similarity(self, fixture_merger):
        before = fixture_merger.build_merged_coa()
        after = fixture_merger.build_merged_coa("testland")

        diff = compare_charts(before.accounts, after.accounts)
        assert diff.added == ["2310000"]
        assert diff.removed == []
        assert [m["code"] for m in diff.modified] == ["2300000", "4100000"]
        assert diff.modified[0]["fields"] == ["name"]
        assert diff.change_count == 3
        assert diff.similarity_score == 0.7
        assert diff.migration_complexity == "low"

    def test_identical_charts(self, fixture_merger):
        chart = fixture_merger.build_merged_coa().accounts
        diff = compare_charts(chart, chart)
        assert diff.change_count == 0
        assert diff.similarity_score == 1.0

    def test_complexity_grows_with_changes(self):
        old = [Account(code=str(1000000 + i), name=f"A{i}") for i in range(30)]
        assert compare_charts(old, old[:20]).migration_complexity == "medium"
        assert compare_charts(old, []).migration_complexity == "high"
        assert compare_charts([], []).similarity_score == 1.0
