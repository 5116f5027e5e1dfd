"""Statement builders, one module per operation family."""
