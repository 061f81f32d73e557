"""
Venue connection module.

Connection lifecycle, heartbeat and reconnect management over
interchangeable transports: the Deriv websocket API and an in-process
paper venue.
"""

from .connection import ConnectionState, VenueConnection
from .transport import VenueTransport

__all__ = ["ConnectionState", "VenueConnection", "VenueTransport"]
