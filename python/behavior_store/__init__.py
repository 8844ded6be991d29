"""
Behavior Store - local behavioral data store

This package persists per-user browsing-behavior telemetry on-device:
- Date-keyed daily metrics, behavior patterns, site activity and reports
- Whole-value blobs for daily reports, journal entries and preferences
- Retention sweeps over a configurable rolling window
- Schema migrations run once at startup
- Whole-dataset export/import and storage usage reporting
"""

__version__ = "0.1.0"
__all__ = [
    "config",
    "exceptions",
    "logging",
    "messages",
    "models",
    "service",
    "storage",
]
