"""SQLite mirror store: schema, connection handling and repositories."""
