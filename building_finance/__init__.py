"""Financial quarter and service-charge demand engine for building management."""

__version__ = "0.1.0"
