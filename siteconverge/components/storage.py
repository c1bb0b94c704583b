"""Private S3 bucket serving as the CloudFront origin."""

import logging
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError

from ..aws import aws_errors, error_code
from ..errors import ProvisioningError
from ..models import Change, DomainTopology, OriginStore

logger = logging.getLogger(__name__)

COMPONENT = "storage"

BLOCK_ALL = {
  "BlockPublicAcls": True,
  "IgnorePublicAcls": True,
  "BlockPublicPolicy": True,
  "RestrictPublicBuckets": True,
}
OBJECT_OWNERSHIP = "BucketOwnerEnforced"


@dataclass
class ObservedBucket:
  """What S3 reports about the bucket right now."""

  exists: bool
  public_access_block: dict[str, bool] | None = None
  versioning: str | None = None
  ownership: str | None = None
  tags: list[dict[str, str]] = field(default_factory=list)


def plan_store(name: str, tags: list[dict[str, str]], observed: ObservedBucket) -> list[Change]:
  """Changes needed to make the bucket private, versioned and tagged."""
  if not observed.exists:
    return [Change(COMPONENT, "create", name, "private, versioned")]

  changes = []
  if observed.public_access_block != BLOCK_ALL:
    changes.append(Change(COMPONENT, "update", name, "block public access"))
  if observed.versioning != "Enabled":
    changes.append(Change(COMPONENT, "update", name, "enable versioning"))
  if observed.ownership != OBJECT_OWNERSHIP:
    changes.append(Change(COMPONENT, "update", name, "enforce bucket owner"))
  if sorted(observed.tags, key=lambda t: t["Key"]) != tags:
    changes.append(Change(COMPONENT, "update", name, "tags"))
  return changes


class StorageBinder:
  """Create the origin bucket and keep it locked down."""

  def __init__(self, s3: Any, region: str = "us-east-1") -> None:
    self.s3 = s3
    self.region = region
    self.changes: list[Change] = []

  def _get(self, call: str, name: str, missing_code: str) -> dict[str, Any] | None:
    try:
      return dict(getattr(self.s3, call)(Bucket=name))
    except ClientError as e:
      if error_code(e) == missing_code:
        return None
      raise

  def observe(self, name: str) -> ObservedBucket:
    try:
      self.s3.head_bucket(Bucket=name)
    except ClientError as e:
      code = error_code(e)
      if code in ("404", "NoSuchBucket"):
        return ObservedBucket(exists=False)
      if code == "403":
        raise ProvisioningError(COMPONENT, f"Bucket {name} exists but is not ours") from e
      raise

    pab = self._get("get_public_access_block", name, "NoSuchPublicAccessBlockConfiguration")
    ownership = self._get("get_bucket_ownership_controls", name, "OwnershipControlsNotFoundError")
    tagging = self._get("get_bucket_tagging", name, "NoSuchTagSet")
    versioning = self.s3.get_bucket_versioning(Bucket=name)

    rules = (ownership or {}).get("OwnershipControls", {}).get("Rules", [])
    return ObservedBucket(
      exists=True,
      public_access_block=(pab or {}).get("PublicAccessBlockConfiguration"),
      versioning=versioning.get("Status"),
      ownership=rules[0]["ObjectOwnership"] if rules else None,
      tags=(tagging or {}).get("TagSet", []),
    )

  def ensure_store(self, name: str, topology: DomainTopology) -> OriginStore:
    """Create the bucket if absent and enforce its private settings."""
    tags = topology.aws_tags()
    with aws_errors(COMPONENT):
      observed = self.observe(name)
      self.changes = plan_store(name, tags, observed)

      if not observed.exists:
        kwargs: dict[str, Any] = {"Bucket": name, "ObjectOwnership": OBJECT_OWNERSHIP}
        if self.region != "us-east-1":
          kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self.s3.create_bucket(**kwargs)
        logger.info("Created bucket %s in %s", name, self.region)
        observed = ObservedBucket(exists=True, ownership=OBJECT_OWNERSHIP)

      if observed.public_access_block != BLOCK_ALL:
        self.s3.put_public_access_block(Bucket=name, PublicAccessBlockConfiguration=BLOCK_ALL)
        logger.info("Blocked public access on %s", name)
      if observed.versioning != "Enabled":
        self.s3.put_bucket_versioning(
          Bucket=name, VersioningConfiguration={"Status": "Enabled"}
        )
      if observed.ownership != OBJECT_OWNERSHIP:
        self.s3.put_bucket_ownership_controls(
          Bucket=name,
          OwnershipControls={"Rules": [{"ObjectOwnership": OBJECT_OWNERSHIP}]},
        )
      if sorted(observed.tags, key=lambda t: t["Key"]) != tags:
        self.s3.put_bucket_tagging(Bucket=name, Tagging={"TagSet": tags})

    return OriginStore(name=name, region=self.region)
