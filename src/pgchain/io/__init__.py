"""I/O layer: connection collaborators."""
