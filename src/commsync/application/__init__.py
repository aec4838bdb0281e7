"""Application layer - sync engine, usage accounting and search."""
