"""Database clients exports."""

from imginspect.db.osv import OSVClient, OSVVulnerability

__all__ = ["OSVClient", "OSVVulnerability"]
