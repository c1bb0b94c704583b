"""Convergence components for static website infrastructure."""

from .access_policy import AccessPolicyBinder
from .certificate import CertificateManager
from .content import ContentPublisher
from .distribution import DistributionManager
from .dns import DnsAliasBinder
from .static_site import RunReport, StaticSitePipeline
from .storage import StorageBinder
from .zone import ZoneResolver

__all__ = [
  "AccessPolicyBinder",
  "CertificateManager",
  "ContentPublisher",
  "DistributionManager",
  "DnsAliasBinder",
  "RunReport",
  "StaticSitePipeline",
  "StorageBinder",
  "ZoneResolver",
]
