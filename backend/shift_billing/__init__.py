"""Billing reconciliation core for the shift-scheduling platform."""
