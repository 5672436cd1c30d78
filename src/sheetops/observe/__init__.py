"""Lifecycle events and timing."""
