"""Grocery catalog scraping engine."""

__version__ = "0.1.0"
