"""SQLite storage helpers and schema migrations."""
