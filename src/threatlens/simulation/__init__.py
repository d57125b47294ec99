"""Synthetic attack and event generators."""
