"""Convergence run for one static site."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..aws import AwsClients
from ..config import SiteConfig
from ..errors import ConvergenceError, ProvisioningError
from ..models import (
  AliasRecord,
  CertificateRecord,
  Change,
  DomainTopology,
  EdgeDistribution,
  HostedZone,
  OriginStore,
)
from . import access_policy, certificate, content, distribution, dns, storage, zone
from .access_policy import AccessPolicyBinder
from .certificate import CertificateManager
from .content import ContentPublisher
from .distribution import CacheSettings, DistributionManager
from .dns import DnsAliasBinder
from .invalidation import invalidate
from .storage import StorageBinder
from .zone import ZoneResolver

logger = logging.getLogger(__name__)

STEPS = (
  zone.COMPONENT,
  certificate.COMPONENT,
  storage.COMPONENT,
  distribution.COMPONENT,
  access_policy.COMPONENT,
  dns.COMPONENT,
  content.COMPONENT,
  "retire",
)

OK = "ok"
CHANGED = "changed"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass
class ComponentStatus:
  name: str
  status: str = SKIPPED
  changes: list[Change] = field(default_factory=list)
  error: str | None = None


@dataclass
class RunReport:
  """Outcome of one convergence run."""

  domain: str
  statuses: dict[str, ComponentStatus] = field(default_factory=dict)
  zone: HostedZone | None = None
  certificate: CertificateRecord | None = None
  store: OriginStore | None = None
  distribution: EdgeDistribution | None = None
  policy: dict[str, Any] | None = None
  aliases: list[AliasRecord] = field(default_factory=list)
  error: ConvergenceError | None = None

  def __post_init__(self) -> None:
    for step in STEPS:
      self.statuses.setdefault(step, ComponentStatus(step))

  @property
  def succeeded(self) -> bool:
    return self.error is None

  @property
  def changes(self) -> list[Change]:
    return [c for step in STEPS for c in self.statuses[step].changes]


class StaticSitePipeline:
  """Converge zone, certificate, bucket, distribution, policy and DNS.

  Steps run in dependency order. The first failure aborts the rest of the
  chain; earlier steps keep whatever they converged.
  """

  def __init__(
    self,
    clients: AwsClients,
    site: SiteConfig,
    *,
    wait_for_deployment: bool = False,
    sleep: Callable[[float], None] | None = None,
    clock: Callable[[], float] | None = None,
  ) -> None:
    self.clients = clients
    self.site = site
    self.wait_for_deployment = wait_for_deployment

    timing: dict[str, Any] = {}
    if sleep is not None:
      timing["sleep"] = sleep
    if clock is not None:
      timing["clock"] = clock

    self.zones = ZoneResolver(clients.route53)
    self.certificates = CertificateManager(
      clients.acm,
      clients.route53,
      validation_timeout=site.validation_timeout,
      poll_interval=site.poll_interval,
      renew_before_days=site.renew_before_days,
      **timing,
    )
    self.storage = StorageBinder(clients.s3, region=site.region)
    self.distributions = DistributionManager(
      clients.cloudfront,
      cache=CacheSettings(site.min_ttl, site.default_ttl, site.max_ttl),
      error_document=site.error_document,
      price_class=site.price_class,
    )
    self.policies = AccessPolicyBinder(clients.s3)
    self.aliases = DnsAliasBinder(clients.route53)
    self.publisher = ContentPublisher(clients.s3)

  def run(self, artifacts: Path | str | None = None) -> RunReport:
    """Converge the site; never raises ConvergenceError, see ``RunReport.error``."""
    topology = self.site.topology()
    report = RunReport(domain=topology.domain)
    step = STEPS[0]

    def done(name: str, changes: list[Change]) -> None:
      status = report.statuses[name]
      status.changes = list(changes)
      status.status = CHANGED if changes else OK

    try:
      step = zone.COMPONENT
      report.zone = self.zones.resolve(topology.domain, self.site.hosted_zone_id)
      done(step, [])

      step = certificate.COMPONENT
      report.certificate = self.certificates.ensure_certificate(topology, report.zone)
      done(step, self.certificates.changes)

      step = storage.COMPONENT
      report.store = self.storage.ensure_store(self.site.bucket, topology)
      done(step, self.storage.changes)

      step = distribution.COMPONENT
      report.distribution = self.distributions.ensure_distribution(
        topology, report.store, report.certificate
      )
      done(step, self.distributions.changes)

      step = access_policy.COMPONENT
      identity = self.distributions.identity
      if identity is None:
        raise ProvisioningError(step, "No origin access control registered")
      report.policy = self.policies.grant_read(report.store, identity, report.distribution)
      done(step, self.policies.changes)

      step = dns.COMPONENT
      report.aliases = self.aliases.ensure_aliases(
        report.zone, topology.domain, topology.include_www, report.distribution
      )
      done(step, self.aliases.changes)

      step = content.COMPONENT
      if artifacts is not None:
        done(step, self._publish(report.store, report.distribution, artifacts))

      step = "retire"
      done(step, self._retire(topology, report))
    except ConvergenceError as e:
      logger.error("%s: %s failed: %s", topology.domain, step, e)
      report.statuses[step].status = FAILED
      report.statuses[step].error = str(e)
      report.error = e

    return report

  def _publish(
    self, store: OriginStore, edge: EdgeDistribution, artifacts: Path | str
  ) -> list[Change]:
    result = self.publisher.publish(store, artifacts, prune=self.site.prune)
    changes = result.changes()
    if self.site.enable_invalidation:
      invalidation = invalidate(self.clients.cloudfront, edge, result.changed_keys)
      if invalidation is not None:
        changes.append(invalidation)
    return changes

  def _retire(self, topology: DomainTopology, report: RunReport) -> list[Change]:
    # The distribution references the new certificate by now; old ones are
    # deleted only once ACM reports them unused.
    if report.certificate is None or report.distribution is None:
      return []
    if report.distribution.certificate_arn != report.certificate.arn:
      return []
    if self.wait_for_deployment and report.statuses[distribution.COMPONENT].changes:
      self.distributions.wait_deployed(report.distribution)
    return self.certificates.retire(topology.domain, report.certificate)
