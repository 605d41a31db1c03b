"""Tests for rule table validation and loading."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from grant_payroll.calculators import rule_tables as keys
from grant_payroll.calculators.rule_tables import (
    THAI_2025_BRACKETS,
    ConfigSnapshot,
    RuleTableLoader,
    validate_brackets,
    validate_thai_compliance,
)
from grant_payroll.calculators.types import TaxBracketRow
from grant_payroll.exceptions import BracketConfigurationError, ConfigurationError
from grant_payroll.models import BenefitSetting, TaxSetting

TAX_YEAR = 2025


def row(low, high, rate, base="0", order=0) -> TaxBracketRow:
    return TaxBracketRow(
        Decimal(low),
        Decimal(high) if high is not None else None,
        Decimal(rate),
        Decimal(base),
        order,
    )


class TestValidateBrackets:
    """Test bracket table validation."""

    def test_thai_2025_is_valid(self):
        validate_brackets(THAI_2025_BRACKETS, 2025)

    def test_unordered_input_accepted(self):
        validate_brackets([row("100", None, "10"), row("0", "100", "0")])

    def test_empty_table(self):
        with pytest.raises(BracketConfigurationError, match="no tax brackets"):
            validate_brackets([], 2025)

    def test_must_start_at_zero(self):
        with pytest.raises(BracketConfigurationError, match="start at 0"):
            validate_brackets([row("10", None, "5")])

    def test_gap(self):
        with pytest.raises(BracketConfigurationError, match="gap between 100"):
            validate_brackets([row("0", "100", "0"), row("150", None, "5")])

    def test_overlap(self):
        with pytest.raises(BracketConfigurationError, match="overlap at 80"):
            validate_brackets([row("0", "100", "0"), row("80", None, "5")])

    def test_unbounded_middle_bracket(self):
        with pytest.raises(BracketConfigurationError, match="unbounded but not the highest"):
            validate_brackets([row("0", None, "0"), row("100", None, "5")])

    def test_bounded_top_bracket(self):
        with pytest.raises(BracketConfigurationError, match="no upper limit"):
            validate_brackets([row("0", "100", "0"), row("100", "200", "5")])

    def test_rate_out_of_range(self):
        with pytest.raises(BracketConfigurationError, match="out of range"):
            validate_brackets([row("0", "100", "0"), row("100", None, "120")])

    def test_error_carries_year(self):
        with pytest.raises(BracketConfigurationError) as exc_info:
            validate_brackets([], 2031)
        assert exc_info.value.year == 2031
        assert "2031" in str(exc_info.value)


class TestThaiCompliance:
    """Test the compliance report for a snapshot."""

    def test_builtin_tables_compliant(self, config_snapshot):
        assert validate_thai_compliance(config_snapshot) == []

    def test_wrong_ssf_rate_reported(self, config_snapshot):
        settings = dict(config_snapshot.tax_settings)
        settings[keys.SSF_RATE] = Decimal("4")
        snapshot = replace(config_snapshot, tax_settings=settings)

        issues = validate_thai_compliance(snapshot)

        assert issues == ["SSF rate must be exactly 5%, found 4"]

    def test_base_tax_mismatch_reported(self, config_snapshot):
        brackets = list(config_snapshot.brackets)
        brackets[2] = replace(brackets[2], base_tax=Decimal("7000"))
        snapshot = replace(config_snapshot, brackets=tuple(brackets))

        issues = validate_thai_compliance(snapshot)

        assert len(issues) == 1
        assert "does not match cumulative 7500" in issues[0]


class TestConfigSnapshot:
    def test_require_missing_key(self):
        snapshot = ConfigSnapshot(year=2030, brackets=THAI_2025_BRACKETS)
        with pytest.raises(ConfigurationError) as exc_info:
            snapshot.require(keys.SSF_RATE)
        assert exc_info.value.key == keys.SSF_RATE
        assert exc_info.value.year == 2030

    def test_rate_is_fraction(self, config_snapshot):
        assert config_snapshot.rate(keys.SSF_RATE) == Decimal("0.05")

    def test_settings_are_read_only(self, config_snapshot):
        with pytest.raises(TypeError):
            config_snapshot.tax_settings[keys.SSF_RATE] = Decimal("1")


class TestRuleTableLoader:
    """Test loading a snapshot from the settings tables."""

    async def test_loads_seeded_year(self, seeded_config):
        snapshot = await RuleTableLoader(seeded_config).load(TAX_YEAR)

        assert snapshot.year == TAX_YEAR
        assert len(snapshot.brackets) == 8
        assert snapshot.require(keys.SSF_MAX_MONTHLY) == Decimal("750")
        assert snapshot.benefit(keys.HEALTH_WELFARE_LOW_AMOUNT) == Decimal("60")
        assert validate_thai_compliance(snapshot) == []

    async def test_unknown_year_has_no_brackets(self, seeded_config):
        with pytest.raises(BracketConfigurationError, match="no tax brackets"):
            await RuleTableLoader(seeded_config).load(1999)

    async def test_unselected_setting_ignored(self, seeded_config):
        session = seeded_config
        session.add(
            TaxSetting(
                setting_key="EXPERIMENTAL_ALLOWANCE",
                setting_value=Decimal("1"),
                setting_type=TaxSetting.TYPE_ALLOWANCE,
                effective_year=TAX_YEAR,
                is_selected=False,
            )
        )
        await session.flush()

        snapshot = await RuleTableLoader(session).load(TAX_YEAR)

        assert "EXPERIMENTAL_ALLOWANCE" not in snapshot.tax_settings

    async def test_later_benefit_setting_wins(self, seeded_config):
        session = seeded_config
        session.add(
            BenefitSetting(
                setting_key=keys.HEALTH_WELFARE_HIGH_AMOUNT,
                setting_value=Decimal("175"),
                setting_type="numeric",
                effective_date=date(TAX_YEAR, 7, 1),
            )
        )
        await session.flush()

        loader = RuleTableLoader(session)
        june = await loader.load(TAX_YEAR, as_of=date(TAX_YEAR, 6, 30))
        july = await loader.load(TAX_YEAR, as_of=date(TAX_YEAR, 7, 1))

        assert june.benefit(keys.HEALTH_WELFARE_HIGH_AMOUNT) == Decimal("150")
        assert july.benefit(keys.HEALTH_WELFARE_HIGH_AMOUNT) == Decimal("175")
