"""Order customization and cart price reconciliation engine."""

__version__ = "1.0.0"
