"""Database layer: engine configuration, engine-owned models and the retention store."""
