"""Data classes describing desired and observed resources."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import ConfigError

# CloudFront's fixed hosted zone ID for alias targets
CLOUDFRONT_HOSTED_ZONE_ID = "Z2FDTNDATAQYW2"

MANAGED_TAG = "siteconverge:managed"

_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


def is_valid_domain(name: str) -> bool:
  """Return True for a lowercase fully-qualified DNS name without trailing dot."""
  if not name or len(name) > 253 or name.endswith("."):
    return False
  labels = name.split(".")
  if len(labels) < 2:
    return False
  return all(_LABEL.match(label) for label in labels)


def normalize_tags(tags: Any) -> tuple[tuple[str, str], ...]:
  """Accept a mapping or a list of {Key, Value} pairs and return sorted pairs."""
  if tags is None:
    return ()
  if isinstance(tags, dict):
    pairs = [(str(k), str(v)) for k, v in tags.items()]
  elif isinstance(tags, (list, tuple)):
    pairs = []
    for item in tags:
      if isinstance(item, dict) and "Key" in item:
        pairs.append((str(item["Key"]), str(item.get("Value", ""))))
      elif isinstance(item, (list, tuple)) and len(item) == 2:
        pairs.append((str(item[0]), str(item[1])))
      else:
        raise ConfigError(f"Invalid tag entry: {item!r}")
  else:
    raise ConfigError(f"Tags must be a mapping or a list, got {type(tags).__name__}")

  keys = [k for k, _ in pairs]
  duplicates = sorted({k for k in keys if keys.count(k) > 1})
  if duplicates:
    raise ConfigError(f"Duplicate tag keys: {', '.join(duplicates)}")
  return tuple(sorted(pairs))


@dataclass(frozen=True)
class DomainTopology:
  """Desired topology for one site."""

  domain: str
  include_www: bool = True
  tags: tuple[tuple[str, str], ...] = ()

  def __post_init__(self) -> None:
    if not is_valid_domain(self.domain):
      raise ConfigError(f"Invalid domain name: {self.domain!r}")
    object.__setattr__(self, "tags", normalize_tags(self.tags))

  @property
  def www_domain(self) -> str:
    return f"www.{self.domain}"

  @property
  def aliases(self) -> list[str]:
    """Alias names besides the apex."""
    return [self.www_domain] if self.include_www else []

  @property
  def hostnames(self) -> list[str]:
    return [self.domain, *self.aliases]

  @property
  def resource_prefix(self) -> str:
    return self.domain.replace(".", "-")

  def aws_tags(self) -> list[dict[str, str]]:
    """Tags in AWS Key/Value form, including the managed marker."""
    tags = dict(self.tags)
    tags[MANAGED_TAG] = self.domain
    return [{"Key": k, "Value": v} for k, v in sorted(tags.items())]


@dataclass(frozen=True)
class Change:
  """A single action a component applies (or would apply)."""

  component: str
  action: str  # "create", "update", "upsert", "delete", "publish", "invalidate"
  target: str
  detail: str = ""

  def __str__(self) -> str:
    suffix = f" ({self.detail})" if self.detail else ""
    return f"{self.component}: {self.action} {self.target}{suffix}"


@dataclass(frozen=True)
class HostedZone:
  zone_id: str
  name: str


class ValidationState(str, Enum):
  PENDING = "Pending"
  VALIDATED = "Validated"
  FAILED = "Failed"


@dataclass(frozen=True)
class ChallengeRecord:
  """DNS record ACM requires for one covered name."""

  domain: str
  name: str
  record_type: str
  value: str


@dataclass
class CertificateRecord:
  arn: str
  domains: frozenset[str]
  state: ValidationState
  challenges: list[ChallengeRecord] = field(default_factory=list)
  not_after: datetime | None = None
  in_use_by: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class OriginStore:
  name: str
  region: str

  @property
  def arn(self) -> str:
    return f"arn:aws:s3:::{self.name}"

  @property
  def regional_domain_name(self) -> str:
    return f"{self.name}.s3.{self.region}.amazonaws.com"


@dataclass(frozen=True)
class AccessIdentity:
  """CloudFront Origin Access Control; carries no credentials."""

  oac_id: str
  name: str


@dataclass(frozen=True)
class EdgeDistribution:
  distribution_id: str
  arn: str
  domain_name: str
  aliases: tuple[str, ...]
  certificate_arn: str
  identity_id: str
  status: str = "Deployed"


@dataclass(frozen=True)
class AliasRecord:
  name: str
  record_type: str  # "A" or "AAAA"
  target: str
