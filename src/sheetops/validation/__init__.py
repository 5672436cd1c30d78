"""Column type inference and advisory cell validation."""
