"""Release parsing, scoring and metadata matching."""
