"""CloudFront distribution with a private S3 origin.

The distribution reads from the bucket through an Origin Access Control,
serves only HTTPS with the site certificate, and runs the rewrite rule as a
CloudFront Function on viewer-request. It is created once and updated in
place afterwards; a certificate swap is an ordinary config update.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError

from ..aws import aws_errors, error_code
from ..errors import ProvisioningError
from ..models import (
  AccessIdentity,
  CertificateRecord,
  Change,
  DomainTopology,
  EdgeDistribution,
  OriginStore,
  ValidationState,
)
from ..rewrite import FUNCTION_RUNTIME, function_code

logger = logging.getLogger(__name__)

COMPONENT = "distribution"

CACHED_METHODS = ["GET", "HEAD", "OPTIONS"]
MINIMUM_PROTOCOL_VERSION = "TLSv1.2_2021"
ERROR_CACHING_MIN_TTL = 10
UPDATE_ATTEMPTS = 3


@dataclass(frozen=True)
class CacheSettings:
  min_ttl: int = 0
  default_ttl: int = 3600
  max_ttl: int = 86400


def _items(values: list[Any]) -> dict[str, Any]:
  return {"Quantity": len(values), "Items": values} if values else {"Quantity": 0}


def build_distribution_config(
  *,
  topology: DomainTopology,
  origin: OriginStore,
  identity: AccessIdentity,
  certificate_arn: str,
  function_arn: str,
  cache: CacheSettings,
  error_document: str = "404.html",
  price_class: str = "PriceClass_100",
) -> dict[str, Any]:
  """Full desired DistributionConfig for the site."""
  origin_id = f"{origin.name}-origin"
  return {
    "CallerReference": f"siteconverge-{topology.domain}",
    "Comment": f"Static site for {topology.domain}",
    "Enabled": True,
    "Aliases": _items(topology.hostnames),
    "DefaultRootObject": "index.html",
    "Origins": {
      "Quantity": 1,
      "Items": [
        {
          "Id": origin_id,
          "DomainName": origin.regional_domain_name,
          "OriginPath": "",
          "CustomHeaders": {"Quantity": 0},
          "S3OriginConfig": {"OriginAccessIdentity": ""},
          "OriginAccessControlId": identity.oac_id,
        }
      ],
    },
    "DefaultCacheBehavior": {
      "TargetOriginId": origin_id,
      "ViewerProtocolPolicy": "redirect-to-https",
      "AllowedMethods": {
        **_items(CACHED_METHODS),
        "CachedMethods": _items(CACHED_METHODS),
      },
      "Compress": True,
      # Cache key ignores query strings, cookies and headers
      "ForwardedValues": {
        "QueryString": False,
        "Cookies": {"Forward": "none"},
        "Headers": {"Quantity": 0},
        "QueryStringCacheKeys": {"Quantity": 0},
      },
      "MinTTL": cache.min_ttl,
      "DefaultTTL": cache.default_ttl,
      "MaxTTL": cache.max_ttl,
      "FunctionAssociations": _items(
        [{"FunctionARN": function_arn, "EventType": "viewer-request"}]
      ),
      "LambdaFunctionAssociations": {"Quantity": 0},
      "TrustedSigners": {"Enabled": False, "Quantity": 0},
      "SmoothStreaming": False,
      "FieldLevelEncryptionId": "",
    },
    "CacheBehaviors": {"Quantity": 0},
    "CustomErrorResponses": _items(
      [
        {
          "ErrorCode": 404,
          "ResponsePagePath": f"/{error_document}",
          "ResponseCode": "404",
          "ErrorCachingMinTTL": ERROR_CACHING_MIN_TTL,
        }
      ]
    ),
    "ViewerCertificate": {
      "CloudFrontDefaultCertificate": False,
      "ACMCertificateArn": certificate_arn,
      "SSLSupportMethod": "sni-only",
      "MinimumProtocolVersion": MINIMUM_PROTOCOL_VERSION,
    },
    "Restrictions": {"GeoRestriction": {"RestrictionType": "none", "Quantity": 0}},
    "PriceClass": price_class,
    "HttpVersion": "http2and3",
    "IsIPV6Enabled": True,
  }


def managed_view(config: dict[str, Any]) -> dict[str, Any]:
  """Project a DistributionConfig onto the fields this engine owns.

  CloudFront echoes back extra defaults; comparing projections keeps a
  converged distribution from showing a perpetual diff.
  """
  origins = config.get("Origins", {}).get("Items", [])
  origin = origins[0] if origins else {}
  behavior = config.get("DefaultCacheBehavior", {})
  methods = behavior.get("AllowedMethods", {})
  forwarded = behavior.get("ForwardedValues", {})
  viewer = config.get("ViewerCertificate", {})

  return {
    "aliases": sorted(config.get("Aliases", {}).get("Items", [])),
    "certificate": viewer.get("ACMCertificateArn"),
    "ssl_support": viewer.get("SSLSupportMethod"),
    "minimum_protocol": viewer.get("MinimumProtocolVersion"),
    "origin_count": len(origins),
    "origin_domain": origin.get("DomainName"),
    "origin_access_control": origin.get("OriginAccessControlId"),
    "target_origin": behavior.get("TargetOriginId"),
    "viewer_protocol": behavior.get("ViewerProtocolPolicy"),
    "allowed_methods": sorted(methods.get("Items", [])),
    "cached_methods": sorted(methods.get("CachedMethods", {}).get("Items", [])),
    "compress": behavior.get("Compress"),
    "query_string": forwarded.get("QueryString"),
    "cookies": forwarded.get("Cookies", {}).get("Forward"),
    "headers": sorted(forwarded.get("Headers", {}).get("Items", [])),
    "ttl": (behavior.get("MinTTL"), behavior.get("DefaultTTL"), behavior.get("MaxTTL")),
    "functions": sorted(
      (f["EventType"], f["FunctionARN"])
      for f in behavior.get("FunctionAssociations", {}).get("Items", [])
    ),
    "errors": sorted(
      (e["ErrorCode"], e.get("ResponsePagePath"), str(e.get("ResponseCode")))
      for e in config.get("CustomErrorResponses", {}).get("Items", [])
    ),
    "root_object": config.get("DefaultRootObject"),
    "enabled": config.get("Enabled"),
    "price_class": config.get("PriceClass"),
    "ipv6": config.get("IsIPV6Enabled"),
    "http_version": config.get("HttpVersion"),
  }


def plan_distribution(
  desired: dict[str, Any], observed: dict[str, Any] | None, domain: str
) -> list[Change]:
  """Changes needed to bring the observed config to the desired one."""
  if observed is None:
    return [Change(COMPONENT, "create", domain)]

  want, have = managed_view(desired), managed_view(observed)
  drift = sorted(key for key in want if want[key] != have[key])
  if not drift:
    return []
  return [Change(COMPONENT, "update", domain, ", ".join(drift))]


def merge_config(observed: dict[str, Any], desired: dict[str, Any]) -> dict[str, Any]:
  """Overlay the desired managed fields onto the observed config.

  Fields CloudFront added that we do not manage are kept. The original
  CallerReference must be preserved on update.
  """
  merged = copy.deepcopy(observed)
  for key, value in desired.items():
    if key == "CallerReference":
      continue
    if key == "Origins":
      current = {o["Id"]: o for o in observed.get("Origins", {}).get("Items", [])}
      items = [{**current.get(o["Id"], {}), **o} for o in value["Items"]]
      merged[key] = _items(items)
    elif key == "DefaultCacheBehavior":
      behavior = {**observed.get(key, {}), **value}
      # Legacy TTL settings and cache policies are mutually exclusive
      behavior.pop("CachePolicyId", None)
      behavior.pop("OriginRequestPolicyId", None)
      merged[key] = behavior
    else:
      merged[key] = value
  return merged


class DistributionManager:
  """Create or update the site's CloudFront distribution."""

  def __init__(
    self,
    cloudfront: Any,
    *,
    cache: CacheSettings | None = None,
    error_document: str = "404.html",
    price_class: str = "PriceClass_100",
  ) -> None:
    self.cloudfront = cloudfront
    self.cache = cache or CacheSettings()
    self.error_document = error_document
    self.price_class = price_class
    self.identity: AccessIdentity | None = None
    self.changes: list[Change] = []

  # -- access-control identity ------------------------------------------

  def ensure_identity(self, topology: DomainTopology) -> AccessIdentity:
    """Register or reuse the Origin Access Control for this site."""
    name = f"{topology.resource_prefix}-oac"[:64]
    kwargs: dict[str, Any] = {}
    while True:
      listing = self.cloudfront.list_origin_access_controls(**kwargs)["OriginAccessControlList"]
      for item in listing.get("Items", []):
        if item["Name"] == name:
          return AccessIdentity(oac_id=item["Id"], name=name)
      if not listing.get("IsTruncated"):
        break
      kwargs["Marker"] = listing["NextMarker"]

    response = self.cloudfront.create_origin_access_control(
      OriginAccessControlConfig={
        "Name": name,
        "Description": f"Origin access for {topology.domain}",
        "SigningProtocol": "sigv4",
        "SigningBehavior": "always",
        "OriginAccessControlOriginType": "s3",
      }
    )
    oac_id = response["OriginAccessControl"]["Id"]
    logger.info("Created origin access control %s (%s)", name, oac_id)
    self.changes.append(Change(COMPONENT, "create", name, "origin access control"))
    return AccessIdentity(oac_id=oac_id, name=name)

  # -- rewrite function -------------------------------------------------

  def _describe_function(self, name: str, stage: str) -> dict[str, Any] | None:
    try:
      return dict(self.cloudfront.describe_function(Name=name, Stage=stage))
    except ClientError as e:
      if error_code(e) == "NoSuchFunctionExists":
        return None
      raise

  def _live_code(self, name: str) -> bytes:
    body = self.cloudfront.get_function(Name=name, Stage="LIVE")["FunctionCode"]
    return bytes(body.read() if hasattr(body, "read") else body)

  def ensure_rewrite_function(self, topology: DomainTopology, code: str) -> str:
    """Publish the rewrite rule and return the function ARN."""
    name = f"{topology.resource_prefix}-rewrite"[:64]
    config = {"Comment": f"Directory index rewrite for {topology.domain}", "Runtime": FUNCTION_RUNTIME}
    encoded = code.encode()

    live = self._describe_function(name, "LIVE")
    if live is not None and self._live_code(name) == encoded:
      return str(live["FunctionSummary"]["FunctionMetadata"]["FunctionARN"])

    development = self._describe_function(name, "DEVELOPMENT")
    if development is None:
      response = self.cloudfront.create_function(
        Name=name, FunctionConfig=config, FunctionCode=encoded
      )
      action = "create"
    else:
      response = self.cloudfront.update_function(
        Name=name, IfMatch=development["ETag"], FunctionConfig=config, FunctionCode=encoded
      )
      action = "update"

    published = self.cloudfront.publish_function(Name=name, IfMatch=response["ETag"])
    logger.info("Published rewrite function %s", name)
    self.changes.append(Change(COMPONENT, action, name, "rewrite function"))
    return str(published["FunctionSummary"]["FunctionMetadata"]["FunctionARN"])

  # -- distribution -----------------------------------------------------

  def find(self, domain: str) -> dict[str, Any] | None:
    """Summary of the distribution answering for ``domain``, if any."""
    kwargs: dict[str, Any] = {}
    while True:
      listing = self.cloudfront.list_distributions(**kwargs)["DistributionList"]
      for item in listing.get("Items", []):
        if domain in item.get("Aliases", {}).get("Items", []):
          return dict(item)
      if not listing.get("IsTruncated"):
        return None
      kwargs["Marker"] = listing["NextMarker"]

  def ensure_distribution(
    self,
    topology: DomainTopology,
    origin: OriginStore,
    certificate: CertificateRecord,
    rewrite_code: str | None = None,
  ) -> EdgeDistribution:
    """Create or converge the distribution; returns its current state."""
    if certificate.state is not ValidationState.VALIDATED:
      raise ProvisioningError(
        COMPONENT, f"Refusing to bind unvalidated certificate {certificate.arn}"
      )
    self.changes = []

    with aws_errors(COMPONENT):
      identity = self.identity = self.ensure_identity(topology)
      function_arn = self.ensure_rewrite_function(topology, rewrite_code or function_code())
      desired = build_distribution_config(
        topology=topology,
        origin=origin,
        identity=identity,
        certificate_arn=certificate.arn,
        function_arn=function_arn,
        cache=self.cache,
        error_document=self.error_document,
        price_class=self.price_class,
      )

      summary = self.find(topology.domain)
      if summary is None:
        distribution = self._create(topology, desired)
      else:
        distribution = self._update(summary["Id"], topology.domain, desired)

    return EdgeDistribution(
      distribution_id=distribution["Id"],
      arn=distribution["ARN"],
      domain_name=distribution["DomainName"],
      aliases=tuple(distribution["DistributionConfig"]["Aliases"].get("Items", [])),
      certificate_arn=distribution["DistributionConfig"]["ViewerCertificate"]["ACMCertificateArn"],
      identity_id=identity.oac_id,
      status=distribution.get("Status", "InProgress"),
    )

  def _create(self, topology: DomainTopology, desired: dict[str, Any]) -> dict[str, Any]:
    response = self.cloudfront.create_distribution_with_tags(
      DistributionConfigWithTags={
        "DistributionConfig": desired,
        "Tags": {"Items": topology.aws_tags()},
      }
    )
    distribution = response["Distribution"]
    logger.info("Created distribution %s for %s", distribution["Id"], topology.domain)
    self.changes.extend(plan_distribution(desired, None, topology.domain))
    return dict(distribution)

  def _update(self, distribution_id: str, domain: str, desired: dict[str, Any]) -> dict[str, Any]:
    for attempt in range(1, UPDATE_ATTEMPTS + 1):
      current = self.cloudfront.get_distribution_config(Id=distribution_id)
      changes = plan_distribution(desired, current["DistributionConfig"], domain)
      if not changes:
        return dict(self.cloudfront.get_distribution(Id=distribution_id)["Distribution"])

      try:
        response = self.cloudfront.update_distribution(
          Id=distribution_id,
          IfMatch=current["ETag"],
          DistributionConfig=merge_config(current["DistributionConfig"], desired),
        )
      except ClientError as e:
        # Someone else updated it between our read and write
        if error_code(e) == "PreconditionFailed" and attempt < UPDATE_ATTEMPTS:
          logger.warning("Distribution %s changed concurrently, retrying", distribution_id)
          continue
        raise

      logger.info("Updated distribution %s: %s", distribution_id, changes[0].detail)
      self.changes.extend(changes)
      return dict(response["Distribution"])

    raise ProvisioningError(COMPONENT, f"Could not update {distribution_id}")

  def wait_deployed(self, distribution: EdgeDistribution) -> None:
    """Block until the distribution finished propagating to the edges."""
    with aws_errors(COMPONENT):
      waiter = self.cloudfront.get_waiter("distribution_deployed")
      waiter.wait(Id=distribution.distribution_id)
