"""predprices - adaptive price collection for prediction market outcomes."""

__version__ = "0.1.0"
