"""taskbridge: idempotent ClickUp workflow queue and hierarchy sync for the Hub CRM."""

__version__ = "0.1.0"
