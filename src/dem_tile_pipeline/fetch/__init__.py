"""Per-tile download + extraction."""
