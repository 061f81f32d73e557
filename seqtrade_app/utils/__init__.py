"""
Utility functions module.

Time normalization for settlement payloads and duration parsing for
session parameters.

Time Semantics:
- Settlement timestamps from the venue are authoritative for trade records
- All normalized timestamps are integer epoch seconds in UTC
- Wall-clock time is only used for session timers and scheduling guards
"""
