"""Pure domain layer: no I/O, no SQLAlchemy."""
