"""Domain layer for txflow: entities, errors and the import pipeline stages."""
