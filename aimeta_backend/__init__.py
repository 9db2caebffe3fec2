"""Backend for the aimeta metadata indexer."""
