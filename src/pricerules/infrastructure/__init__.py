"""Infrastructure layer: the SQLite catalog store behind the services."""
