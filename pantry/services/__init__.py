"""Cross-cutting application services."""
