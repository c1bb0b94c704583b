"""Pytest fixtures for convergence tests."""

import pytest
from fake_aws import FakeAws, FakeClock

from siteconverge.config import SiteConfig
from siteconverge.models import DomainTopology, HostedZone


@pytest.fixture
def aws() -> FakeAws:
  """A fake AWS account with a public hosted zone for example.test."""
  fake = FakeAws()
  fake.route53.add_zone("example.test")
  return fake


@pytest.fixture
def zone(aws: FakeAws) -> HostedZone:
  zone_id = next(iter(aws.route53.zones))
  return HostedZone(zone_id=zone_id, name="example.test")


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def topology() -> DomainTopology:
  return DomainTopology(domain="example.test", include_www=True, tags={"Project": "portfolio"})


@pytest.fixture
def site() -> SiteConfig:
  return SiteConfig(
    domain="example.test",
    include_www=True,
    tags={"Project": "portfolio"},
    validation_timeout=300,
    poll_interval=5,
  )
