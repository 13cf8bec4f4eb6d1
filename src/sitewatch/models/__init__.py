from sitewatch.models.site import Site
from sitewatch.models.check_result import CheckResult

__all__ = ["Site", "CheckResult"]
