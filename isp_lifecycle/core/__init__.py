"""Lifecycle engine core: plan years, reset operation, registry."""
