"""Election forecast for the Japanese House of Representatives."""

__version__ = "0.1.0"
