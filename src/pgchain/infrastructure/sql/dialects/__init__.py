"""PostgreSQL dialect."""
