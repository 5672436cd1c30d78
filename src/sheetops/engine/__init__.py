"""Applicator, session controller, and edit tools."""
