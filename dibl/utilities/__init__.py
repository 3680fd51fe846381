"""Helpers shared across the `dibl` package."""
