"""Tests for hosted zone resolution."""

import pytest
from fake_aws import FakeAws

from siteconverge.components.zone import ZoneResolver
from siteconverge.errors import ZoneNotFound


class TestZoneResolver:
  def test_resolves_apex_zone(self, aws: FakeAws) -> None:
    zone = ZoneResolver(aws.route53).resolve("example.test")
    assert zone.name == "example.test"
    assert zone.zone_id in aws.route53.zones

  def test_longest_suffix_wins(self, aws: FakeAws) -> None:
    sub_id = aws.route53.add_zone("blog.example.test")
    zone = ZoneResolver(aws.route53).resolve("blog.example.test")
    assert zone.zone_id == sub_id

  def test_parent_zone_for_subdomain(self, aws: FakeAws) -> None:
    zone = ZoneResolver(aws.route53).resolve("docs.example.test")
    assert zone.name == "example.test"

  def test_private_zones_ignored(self) -> None:
    aws = FakeAws()
    aws.route53.add_zone("example.test", private=True)
    with pytest.raises(ZoneNotFound):
      ZoneResolver(aws.route53).resolve("example.test")

  def test_suffix_must_match_whole_labels(self) -> None:
    aws = FakeAws()
    aws.route53.add_zone("ample.test")
    with pytest.raises(ZoneNotFound):
      ZoneResolver(aws.route53).resolve("example.test")

  def test_missing_zone(self) -> None:
    with pytest.raises(ZoneNotFound) as excinfo:
      ZoneResolver(FakeAws().route53).resolve("example.test")
    assert excinfo.value.domain == "example.test"

  def test_explicit_zone_id(self, aws: FakeAws) -> None:
    zone_id = next(iter(aws.route53.zones))
    zone = ZoneResolver(aws.route53).resolve("example.test", hosted_zone_id=zone_id)
    assert zone.zone_id == zone_id

  def test_explicit_zone_id_unknown(self, aws: FakeAws) -> None:
    with pytest.raises(ZoneNotFound):
      ZoneResolver(aws.route53).resolve("example.test", hosted_zone_id="ZNOPE")

  def test_explicit_zone_id_for_other_domain(self, aws: FakeAws) -> None:
    other = aws.route53.add_zone("other.test")
    with pytest.raises(ZoneNotFound):
      ZoneResolver(aws.route53).resolve("example.test", hosted_zone_id=other)

  def test_read_only(self, aws: FakeAws) -> None:
    ZoneResolver(aws.route53).resolve("example.test")
    ZoneResolver(aws.route53).resolve("example.test")
    assert aws.route53.batches == []
