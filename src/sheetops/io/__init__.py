"""Local file helpers: atomic writes, sidecar locks, fingerprints."""
