"""Task tracking dashboard core with business-hours reports and shared-document sync."""

__version__ = "0.1.0"
