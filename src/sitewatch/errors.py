"""
Exceptions raised by the monitoring core.

Reachability failures are not errors: the prober reports them as ``down``
results. Everything here is either bad input, a missing site, a rate-limit
rejection, or a storage failure.
"""
from datetime import datetime


class MonitoringError(Exception):
    """Base class for monitoring core errors."""


class ValidationError(MonitoringError):
    pass


class InvalidURLError(ValidationError):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class BlockedURLError(InvalidURLError):
    """The URL points at an address or port that checks may not reach."""


class InvalidSiteIdError(ValidationError):
    def __init__(self, site_id: str):
        self.site_id = site_id
        super().__init__(f"Invalid site identifier: {site_id!r}")


class SiteNotFoundError(MonitoringError):
    def __init__(self, site_id: str):
        self.site_id = site_id
        super().__init__(f"Site not found: {site_id}")


class RateLimitExceeded(MonitoringError):
    def __init__(self, site_id: str, next_check_allowed: datetime):
        self.site_id = site_id
        self.next_check_allowed = next_check_allowed
        super().__init__(
            f"Site {site_id} was checked recently; next check allowed at "
            f"{next_check_allowed.isoformat()}"
        )


class StorageError(MonitoringError):
    pass
