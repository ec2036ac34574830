"""Deal aggregation and scoring engine for consumer electronics."""

__version__ = "0.1.0"
