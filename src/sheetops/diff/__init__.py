"""Cell-level comparison of sheet states."""
