"""Summary statistics for the presentation layer."""
