"""Runtime helpers for the embedding engine."""
