"""Database engine helpers for the schema scripter."""
