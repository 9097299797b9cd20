"""Adapters binding the mapping engine to concrete infrastructure."""
