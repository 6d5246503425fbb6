"""Application feature modules."""
