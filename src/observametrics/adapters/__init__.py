"""Adapters connecting the core to frameworks and remote backends."""
