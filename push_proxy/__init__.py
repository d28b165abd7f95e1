"""Metrics relay: scrape a target and forward it to a Pushgateway."""

__version__ = "0.1.0"
