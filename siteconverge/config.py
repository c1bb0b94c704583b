"""Configuration loader for multi-site convergence."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .models import DomainTopology, is_valid_domain, normalize_tags

PRICE_CLASSES = ("PriceClass_100", "PriceClass_200", "PriceClass_All")


@dataclass
class SiteConfig:
  """Configuration for a single static site."""

  domain: str
  include_www: bool = True
  tags: dict[str, str] = field(default_factory=dict)
  bucket_name: str | None = None  # Defaults to the domain
  region: str = "us-east-1"
  hosted_zone_id: str | None = None
  error_document: str = "404.html"
  price_class: str = "PriceClass_100"
  min_ttl: int = 0
  default_ttl: int = 3600
  max_ttl: int = 86400
  validation_timeout: int = 1800  # Seconds to wait for ACM
  poll_interval: int = 15
  renew_before_days: int = 30
  enable_invalidation: bool = True
  prune: bool = False  # Delete objects missing from the artifact set

  def __post_init__(self) -> None:
    if not is_valid_domain(self.domain):
      raise ConfigError(f"Invalid domain name: {self.domain!r}")
    if self.price_class not in PRICE_CLASSES:
      raise ConfigError(f"Unknown price_class: {self.price_class}")
    if not 0 <= self.min_ttl <= self.default_ttl <= self.max_ttl:
      raise ConfigError(
        f"TTLs must satisfy 0 <= min <= default <= max for {self.domain}"
      )
    if self.validation_timeout <= 0 or self.poll_interval <= 0:
      raise ConfigError("validation_timeout and poll_interval must be positive")
    self.error_document = self.error_document.lstrip("/")
    if not self.error_document:
      raise ConfigError("error_document must not be empty")

  @property
  def bucket(self) -> str:
    return self.bucket_name or self.domain

  def topology(self) -> DomainTopology:
    """Immutable desired topology for this site."""
    return DomainTopology(
      domain=self.domain,
      include_www=self.include_www,
      tags=normalize_tags(self.tags),
    )


@dataclass
class Config:
  """Multi-site configuration."""

  sites: list[SiteConfig] = field(default_factory=list)

  @classmethod
  def from_yaml(cls, path: Path | str = "sites.yaml") -> "Config":
    """Load configuration from YAML file."""
    with open(path) as f:
      data = yaml.safe_load(f) or {}

    defaults = data.get("defaults", {})
    sites: list[SiteConfig] = []

    for site_data in data.get("sites", []):
      # Merge defaults with site-specific config
      merged: dict[str, Any] = {**defaults, **site_data}
      if "domain" not in merged:
        raise ConfigError(f"Site entry without domain: {site_data!r}")

      # Tags merge key by key so sites can add to the default set
      tags = {
        **dict(normalize_tags(defaults.get("tags"))),
        **dict(normalize_tags(site_data.get("tags"))),
      }

      sites.append(
        SiteConfig(
          domain=str(merged["domain"]).lower(),
          include_www=merged.get("include_www", True),
          tags=tags,
          bucket_name=merged.get("bucket_name"),
          region=merged.get("region", "us-east-1"),
          hosted_zone_id=merged.get("hosted_zone_id"),
          error_document=merged.get("error_document", "404.html"),
          price_class=merged.get("price_class", "PriceClass_100"),
          min_ttl=int(merged.get("min_ttl", 0)),
          default_ttl=int(merged.get("default_ttl", 3600)),
          max_ttl=int(merged.get("max_ttl", 86400)),
          validation_timeout=int(merged.get("validation_timeout", 1800)),
          poll_interval=int(merged.get("poll_interval", 15)),
          renew_before_days=int(merged.get("renew_before_days", 30)),
          enable_invalidation=merged.get("enable_invalidation", True),
          prune=merged.get("prune", False),
        )
      )

    domains = [site.domain for site in sites]
    duplicates = sorted({d for d in domains if domains.count(d) > 1})
    if duplicates:
      raise ConfigError(f"Sites listed more than once: {', '.join(duplicates)}")

    return cls(sites=sites)

  def get_site(self, domain: str) -> SiteConfig:
    for site in self.sites:
      if site.domain == domain.lower():
        return site
    raise ConfigError(f"No site configured for {domain}")
