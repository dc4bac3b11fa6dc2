"""Service entry point."""
