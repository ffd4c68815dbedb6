"""Expense splitting and balance sheets for group trips."""
