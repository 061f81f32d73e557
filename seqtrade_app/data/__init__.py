"""
Trade data module.

Handles settlement parsing into flat trade records, contract kinds and
purchase parameters for the venue.
"""
