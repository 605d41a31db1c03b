"""Grant-funded payroll engine for SMRU and BHF."""

__version__ = "0.1.0"
