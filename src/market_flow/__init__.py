"""MarketFlow - scheduled AI market briefings."""

__version__ = "0.1.0"
