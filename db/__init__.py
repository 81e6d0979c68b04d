"""Relational storage for screeners, stocks, matches and chart metadata."""
