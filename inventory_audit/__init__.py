"""Physical inventory audit sessions for multi-tenant retail back offices."""

__version__ = "1.0.0"
