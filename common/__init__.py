"""Shared types, tile math and logging helpers."""
