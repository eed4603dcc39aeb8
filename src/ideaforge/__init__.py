"""Ideaforge: scrape external sources and enrich them into idea records."""

__version__ = "0.1.0"
