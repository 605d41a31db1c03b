"""HTTP API for the grant payroll engine."""
