"""Payroll and income tax calculation."""

from grant_payroll.calculators.payroll_calculator import PayrollCalculator
from grant_payroll.calculators.rule_tables import ConfigSnapshot, RuleTableLoader
from grant_payroll.calculators.tax_calculator import ThaiIncomeTaxCalculator
from grant_payroll.calculators.types import (
    AllocationInput,
    EmployeeProfile,
    EmploymentTerms,
    PayrollBreakdown,
)

__all__ = [
    "PayrollCalculator",
    "ConfigSnapshot",
    "RuleTableLoader",
    "ThaiIncomeTaxCalculator",
    "AllocationInput",
    "EmployeeProfile",
    "EmploymentTerms",
    "PayrollBreakdown",
]
