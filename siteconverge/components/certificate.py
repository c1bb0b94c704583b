"""ACM certificate lifecycle with DNS validation.

A certificate is never mutated in place. When the covered names change or
the current certificate is close to expiry, a new one is requested and
validated while the old one keeps serving. The old certificate is deleted
by ``retire`` only once the distribution has switched away from it and ACM
reports it unused.
"""

import hashlib
import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from ..aws import aws_errors
from ..errors import CertificateValidationFailed
from ..models import (
  MANAGED_TAG,
  CertificateRecord,
  ChallengeRecord,
  Change,
  DomainTopology,
  HostedZone,
  ValidationState,
)

logger = logging.getLogger(__name__)

COMPONENT = "certificate"
CHALLENGE_TTL = 60

LISTED_STATUSES = [
  "PENDING_VALIDATION",
  "ISSUED",
  "INACTIVE",
  "EXPIRED",
  "VALIDATION_TIMED_OUT",
  "REVOKED",
  "FAILED",
]
FAILED_STATUSES = {"FAILED", "VALIDATION_TIMED_OUT", "REVOKED", "EXPIRED", "INACTIVE"}

_STATES = {"ISSUED": ValidationState.VALIDATED, "PENDING_VALIDATION": ValidationState.PENDING}


def idempotency_token(domains: frozenset[str], superseded: list[str] | None = None) -> str:
  """ACM idempotency token (alphanumeric, max 32 chars) for one request.

  Covers the name set and the ARNs of the unusable certificates the request
  replaces, so runs racing on the same observation share one request while a
  retry after a failed certificate gets a new one.
  """
  material = ",".join(sorted(domains)) + "|" + ",".join(sorted(superseded or []))
  return hashlib.sha256(material.encode()).hexdigest()[:32]


def to_record(cert: dict[str, Any]) -> CertificateRecord:
  """Build a CertificateRecord from a describe_certificate payload."""
  domains = frozenset([cert["DomainName"], *cert.get("SubjectAlternativeNames", [])])
  challenges = [
    ChallengeRecord(
      domain=option["DomainName"],
      name=option["ResourceRecord"]["Name"],
      record_type=option["ResourceRecord"]["Type"],
      value=option["ResourceRecord"]["Value"],
    )
    for option in cert.get("DomainValidationOptions", [])
    if "ResourceRecord" in option
  ]
  return CertificateRecord(
    arn=cert["CertificateArn"],
    domains=domains,
    state=_STATES.get(cert.get("Status", ""), ValidationState.FAILED),
    challenges=challenges,
    not_after=cert.get("NotAfter"),
    in_use_by=list(cert.get("InUseBy", [])),
  )


def plan_certificate(
  domains: frozenset[str],
  observed: list[CertificateRecord],
  now: datetime,
  renew_before: timedelta,
) -> tuple[CertificateRecord | None, list[Change]]:
  """Pick an existing certificate to use, or plan a new request.

  Returns the certificate to reuse (validated or still pending) and the
  changes needed. A validated, non-expiring exact match needs no change.
  """
  matching = [c for c in observed if c.domains == domains]

  validated = [
    c
    for c in matching
    if c.state is ValidationState.VALIDATED
    and (c.not_after is None or c.not_after - now > renew_before)
  ]
  if validated:
    newest = max(validated, key=lambda c: c.not_after or datetime.max.replace(tzinfo=timezone.utc))
    return newest, []

  pending = [c for c in matching if c.state is ValidationState.PENDING]
  if pending:
    return pending[0], []

  names = ", ".join(sorted(domains))
  return None, [Change(COMPONENT, "create", names, "DNS validated")]


def plan_challenges(
  challenges: list[ChallengeRecord], existing: dict[tuple[str, str], str]
) -> list[ChallengeRecord]:
  """Challenge records not already present in the zone with the right value.

  ``existing`` maps (name, type) to the current record value. Records shared
  by several covered names are returned once.
  """
  needed: dict[tuple[str, str], ChallengeRecord] = {}
  for challenge in challenges:
    key = (challenge.name, challenge.record_type)
    if existing.get(key) == challenge.value:
      continue
    needed.setdefault(key, challenge)
  return list(needed.values())


class CertificateManager:
  """Request, validate and retire ACM certificates for one site."""

  def __init__(
    self,
    acm: Any,
    route53: Any,
    *,
    validation_timeout: float = 1800,
    poll_interval: float = 15,
    renew_before_days: int = 30,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
  ) -> None:
    self.acm = acm
    self.route53 = route53
    self.validation_timeout = validation_timeout
    self.poll_interval = poll_interval
    self.renew_before = timedelta(days=renew_before_days)
    self._sleep = sleep
    self._clock = clock
    self._now = now
    self.changes: list[Change] = []

  def observe(self, domain: str) -> list[CertificateRecord]:
    """Amazon-issued certificates whose primary name is ``domain``."""
    records = []
    kwargs: dict[str, Any] = {"CertificateStatuses": LISTED_STATUSES}
    while True:
      response = self.acm.list_certificates(**kwargs)
      for summary in response.get("CertificateSummaryList", []):
        if summary.get("DomainName") != domain:
          continue
        cert = self.acm.describe_certificate(CertificateArn=summary["CertificateArn"])
        detail = cert["Certificate"]
        if detail.get("Type", "AMAZON_ISSUED") != "AMAZON_ISSUED":
          continue
        records.append(to_record(detail))
      if not response.get("NextToken"):
        return records
      kwargs["NextToken"] = response["NextToken"]

  def ensure_certificate(
    self,
    topology: DomainTopology,
    zone: HostedZone,
  ) -> CertificateRecord:
    """Return a validated certificate covering exactly the topology's names."""
    domains = frozenset(topology.hostnames)
    self.changes = []

    with aws_errors(COMPONENT):
      observed = self.observe(topology.domain)
      existing, changes = plan_certificate(domains, observed, self._now(), self.renew_before)
      if existing is not None and existing.state is ValidationState.VALIDATED:
        logger.debug("Reusing certificate %s", existing.arn)
        return existing

      if existing is None:
        superseded = [c.arn for c in observed if c.domains == domains]
        arn = self._request(topology, domains, superseded)
        self.changes.extend(changes)
      else:
        arn = existing.arn
        logger.info("Resuming validation of pending certificate %s", arn)

      deadline = self._clock() + self.validation_timeout
      record = self._await_challenges(arn, domains, deadline)
      self._publish_challenges(zone, record.challenges)
      return self._await_validation(record, deadline)

  def _request(self, topology: DomainTopology, domains: frozenset[str], superseded: list[str]) -> str:
    kwargs: dict[str, Any] = {
      "DomainName": topology.domain,
      "ValidationMethod": "DNS",
      "IdempotencyToken": idempotency_token(domains, superseded),
      "Tags": topology.aws_tags(),
    }
    if topology.aliases:
      kwargs["SubjectAlternativeNames"] = topology.aliases
    arn = str(self.acm.request_certificate(**kwargs)["CertificateArn"])
    logger.info("Requested certificate %s for %s", arn, ", ".join(sorted(domains)))
    return arn

  def _describe(self, arn: str) -> dict[str, Any]:
    return dict(self.acm.describe_certificate(CertificateArn=arn)["Certificate"])

  def _await_challenges(
    self, arn: str, domains: frozenset[str], deadline: float
  ) -> CertificateRecord:
    # ACM fills in ResourceRecord asynchronously after the request
    while True:
      cert = self._describe(arn)
      record = to_record(cert)
      if cert.get("Status") in FAILED_STATUSES:
        raise CertificateValidationFailed(arn, cert.get("FailureReason", cert["Status"]))
      if {c.domain for c in record.challenges} >= domains:
        return record
      if self._clock() >= deadline:
        raise CertificateValidationFailed(arn, "challenge records never became available")
      self._sleep(self.poll_interval)

  def _existing_records(
    self, zone: HostedZone, challenges: list[ChallengeRecord]
  ) -> dict[tuple[str, str], str]:
    existing: dict[tuple[str, str], str] = {}
    for challenge in challenges:
      response = self.route53.list_resource_record_sets(
        HostedZoneId=zone.zone_id,
        StartRecordName=challenge.name,
        StartRecordType=challenge.record_type,
        MaxItems="1",
      )
      for rrset in response.get("ResourceRecordSets", []):
        if rrset["Name"] == challenge.name and rrset["Type"] == challenge.record_type:
          values = [r["Value"] for r in rrset.get("ResourceRecords", [])]
          existing[(challenge.name, challenge.record_type)] = values[0] if values else ""
    return existing

  def _publish_challenges(self, zone: HostedZone, challenges: list[ChallengeRecord]) -> None:
    needed = plan_challenges(challenges, self._existing_records(zone, challenges))
    if not needed:
      return

    self.route53.change_resource_record_sets(
      HostedZoneId=zone.zone_id,
      ChangeBatch={
        "Comment": "ACM DNS validation",
        "Changes": [
          {
            "Action": "UPSERT",
            "ResourceRecordSet": {
              "Name": c.name,
              "Type": c.record_type,
              "TTL": CHALLENGE_TTL,
              "ResourceRecords": [{"Value": c.value}],
            },
          }
          for c in needed
        ],
      },
    )
    for c in needed:
      logger.info("Published validation record %s for %s", c.name, c.domain)
      self.changes.append(Change(COMPONENT, "upsert", c.name, f"validation for {c.domain}"))

  def _await_validation(self, record: CertificateRecord, deadline: float) -> CertificateRecord:
    while True:
      cert = self._describe(record.arn)
      status = cert.get("Status")
      if status == "ISSUED":
        logger.info("Certificate %s validated", record.arn)
        return to_record(cert)
      if status in FAILED_STATUSES:
        raise CertificateValidationFailed(record.arn, cert.get("FailureReason", status))

      failed = [
        o["DomainName"]
        for o in cert.get("DomainValidationOptions", [])
        if o.get("ValidationStatus") == "FAILED"
      ]
      if failed:
        raise CertificateValidationFailed(record.arn, f"validation failed for {', '.join(failed)}")
      if self._clock() >= deadline:
        raise CertificateValidationFailed(
          record.arn, f"not validated within {self.validation_timeout:g}s"
        )
      logger.debug("Waiting for %s (%s)", record.arn, status)
      self._sleep(self.poll_interval)

  def retire(self, domain: str, current: CertificateRecord) -> list[Change]:
    """Delete replaced certificates for ``domain`` that nothing references.

    Only certificates tagged as managed for this domain are considered, and
    pending ones are left alone since another run may be validating them.
    """
    retired: list[Change] = []
    with aws_errors(COMPONENT):
      for record in self.observe(domain):
        if record.arn == current.arn or record.state is ValidationState.PENDING:
          continue
        tags = self.acm.list_tags_for_certificate(CertificateArn=record.arn).get("Tags", [])
        if {"Key": MANAGED_TAG, "Value": domain} not in tags:
          continue
        if record.in_use_by:
          logger.info("Keeping %s, still used by %s", record.arn, ", ".join(record.in_use_by))
          continue
        self.acm.delete_certificate(CertificateArn=record.arn)
        logger.info("Deleted replaced certificate %s", record.arn)
        retired.append(Change(COMPONENT, "delete", record.arn, "replaced"))
    return retired
