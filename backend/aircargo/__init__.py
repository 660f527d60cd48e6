"""
Air cargo booking service.

Tracks cargo bookings from creation through departure, arrival and delivery,
with a lock- and version-guarded status lifecycle, an append-only timeline,
Valkey-backed caching of booking aggregates and route searches, and a
direct/one-stop route finder over the flight schedule.
"""

__version__ = "0.1.0"
