"""Live secret records."""
