"""Origin-based event correlation."""
