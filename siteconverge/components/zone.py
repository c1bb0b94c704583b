"""Route 53 hosted zone lookup."""

import logging
from typing import Any

from botocore.exceptions import ClientError

from ..aws import aws_errors, error_code
from ..errors import ZoneNotFound
from ..models import HostedZone

logger = logging.getLogger(__name__)

COMPONENT = "zone"


def _zone_id(raw_id: str) -> str:
  # Route 53 returns IDs as "/hostedzone/Z123"
  return raw_id.rsplit("/", 1)[-1]


def _owns(zone_name: str, domain: str) -> bool:
  zone_name = zone_name.rstrip(".")
  return domain == zone_name or domain.endswith(f".{zone_name}")


class ZoneResolver:
  """Find the authoritative public hosted zone for a domain. Read-only."""

  def __init__(self, route53: Any) -> None:
    self.route53 = route53

  def _public_zones(self) -> list[dict[str, Any]]:
    zones: list[dict[str, Any]] = []
    kwargs: dict[str, Any] = {}
    while True:
      response = self.route53.list_hosted_zones(**kwargs)
      zones.extend(
        z
        for z in response.get("HostedZones", [])
        if not z.get("Config", {}).get("PrivateZone", False)
      )
      if not response.get("IsTruncated"):
        return zones
      kwargs["Marker"] = response["NextMarker"]

  def resolve(self, domain: str, hosted_zone_id: str | None = None) -> HostedZone:
    """Return the zone owning ``domain``; the longest matching suffix wins."""
    with aws_errors(COMPONENT):
      if hosted_zone_id:
        return self._resolve_by_id(domain, hosted_zone_id)

      candidates = [z for z in self._public_zones() if _owns(z["Name"], domain)]

    if not candidates:
      raise ZoneNotFound(domain)

    best = max(candidates, key=lambda z: len(z["Name"].rstrip(".")))
    zone = HostedZone(zone_id=_zone_id(best["Id"]), name=best["Name"].rstrip("."))
    logger.debug("Resolved %s to hosted zone %s (%s)", domain, zone.zone_id, zone.name)
    return zone

  def _resolve_by_id(self, domain: str, hosted_zone_id: str) -> HostedZone:
    try:
      response = self.route53.get_hosted_zone(Id=hosted_zone_id)
    except ClientError as e:
      if error_code(e) == "NoSuchHostedZone":
        raise ZoneNotFound(domain) from e
      raise

    zone = response["HostedZone"]
    if not _owns(zone["Name"], domain):
      raise ZoneNotFound(domain)
    return HostedZone(zone_id=_zone_id(zone["Id"]), name=zone["Name"].rstrip("."))
