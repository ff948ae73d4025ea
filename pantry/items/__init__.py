"""Inventory items: ownership-scoped stock records mutated by receipt reconciliation."""
