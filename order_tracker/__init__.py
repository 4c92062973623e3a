"""Order fulfillment tracking: pipeline rules, persistence and synchronisation."""

__version__ = "0.1.0"
