"""Pack-aware multi-phase search."""
