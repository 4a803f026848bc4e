"""Index definitions, capability checks and request compilation."""
