"""Route 53 alias records pointing the site names at CloudFront."""

import logging
from typing import Any

from ..aws import aws_errors
from ..errors import AliasConflict
from ..models import CLOUDFRONT_HOSTED_ZONE_ID, AliasRecord, Change, EdgeDistribution, HostedZone

logger = logging.getLogger(__name__)

COMPONENT = "dns"
RECORD_TYPES = ("A", "AAAA")


def _fqdn(name: str) -> str:
  return name if name.endswith(".") else f"{name}."


def _bare(name: str) -> str:
  return name.rstrip(".").lower()


def is_managed(rrset: dict[str, Any]) -> bool:
  """A plain CloudFront alias is something this engine may own."""
  target = rrset.get("AliasTarget")
  return (
    target is not None
    and target.get("HostedZoneId") == CLOUDFRONT_HOSTED_ZONE_ID
    and "SetIdentifier" not in rrset
  )


def alias_rrset(name: str, record_type: str, endpoint: str) -> dict[str, Any]:
  return {
    "Name": _fqdn(name),
    "Type": record_type,
    "AliasTarget": {
      "HostedZoneId": CLOUDFRONT_HOSTED_ZONE_ID,
      "DNSName": _fqdn(endpoint),
      "EvaluateTargetHealth": False,
    },
  }


def _same_target(rrset: dict[str, Any], endpoint: str) -> bool:
  target = rrset["AliasTarget"]
  return _bare(target.get("DNSName", "")) == _bare(endpoint) and not target.get(
    "EvaluateTargetHealth", False
  )


def plan_aliases(
  domain: str,
  www_enabled: bool,
  endpoint: str,
  observed: dict[tuple[str, str], dict[str, Any]],
) -> tuple[list[dict[str, Any]], list[Change]]:
  """Route 53 change list reconciling observed records with the desired set.

  ``observed`` maps (bare name, type) to record sets found in the zone.
  """
  www = f"www.{domain}"
  desired_names = [domain, www] if www_enabled else [domain]

  batch: list[dict[str, Any]] = []
  changes: list[Change] = []

  for name in desired_names:
    cname = observed.get((name, "CNAME"))
    if cname is not None:
      raise AliasConflict(name, "CNAME", "a CNAME occupies the name")
    for record_type in RECORD_TYPES:
      existing = observed.get((name, record_type))
      if existing is not None and not is_managed(existing):
        raise AliasConflict(name, record_type, "not a CloudFront alias")
      if existing is not None and _same_target(existing, endpoint):
        continue
      batch.append({"Action": "UPSERT", "ResourceRecordSet": alias_rrset(name, record_type, endpoint)})
      changes.append(Change(COMPONENT, "upsert", f"{name} {record_type}", endpoint))

  if not www_enabled:
    for record_type in RECORD_TYPES:
      existing = observed.get((www, record_type))
      if existing is not None and is_managed(existing):
        batch.append({"Action": "DELETE", "ResourceRecordSet": existing})
        changes.append(Change(COMPONENT, "delete", f"{www} {record_type}"))

  return batch, changes


class DnsAliasBinder:
  """Owns the apex and www A/AAAA records of a site."""

  def __init__(self, route53: Any) -> None:
    self.route53 = route53
    self.changes: list[Change] = []

  def observe(self, zone: HostedZone, names: list[str]) -> dict[tuple[str, str], dict[str, Any]]:
    observed: dict[tuple[str, str], dict[str, Any]] = {}
    for name in names:
      response = self.route53.list_resource_record_sets(
        HostedZoneId=zone.zone_id, StartRecordName=_fqdn(name), MaxItems="100"
      )
      for rrset in response.get("ResourceRecordSets", []):
        if _bare(rrset["Name"]) != name:
          continue
        if rrset["Type"] in (*RECORD_TYPES, "CNAME"):
          observed[(name, rrset["Type"])] = rrset
    return observed

  def ensure_aliases(
    self,
    zone: HostedZone,
    domain: str,
    www_enabled: bool,
    distribution: EdgeDistribution,
  ) -> list[AliasRecord]:
    """Publish alias records and return the desired set now in place."""
    with aws_errors(COMPONENT):
      observed = self.observe(zone, [domain, f"www.{domain}"])
      batch, self.changes = plan_aliases(domain, www_enabled, distribution.domain_name, observed)
      if batch:
        self.route53.change_resource_record_sets(
          HostedZoneId=zone.zone_id,
          ChangeBatch={"Comment": f"Aliases for {domain}", "Changes": batch},
        )
        for change in self.changes:
          logger.info("%s", change)

    names = [domain, f"www.{domain}"] if www_enabled else [domain]
    return [
      AliasRecord(name=name, record_type=record_type, target=distribution.domain_name)
      for name in names
      for record_type in RECORD_TYPES
    ]
