"""Organisations backing initiatives."""
