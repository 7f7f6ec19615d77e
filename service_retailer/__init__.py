"""Retailer access layer: proxy for the partner retailer API."""
