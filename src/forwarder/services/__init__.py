"""Payment session services."""
