"""Reconnaissance pipeline: discovery, scraping, profile and pretext stages."""

__version__ = "0.1.0"
