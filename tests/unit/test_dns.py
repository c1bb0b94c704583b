"""Tests for the Route 53 alias records."""

import pytest
from fake_aws import FakeAws

from siteconverge.components.dns import DnsAliasBinder, alias_rrset, plan_aliases
from siteconverge.errors import AliasConflict
from siteconverge.models import CLOUDFRONT_HOSTED_ZONE_ID, EdgeDistribution, HostedZone

EDGE = EdgeDistribution(
  distribution_id="E1DIST",
  arn="arn:aws:cloudfront::123456789012:distribution/E1DIST",
  domain_name="d111111abcdef8.cloudfront.net",
  aliases=("example.test", "www.example.test"),
  certificate_arn="arn:aws:acm:us-east-1:123456789012:certificate/abc",
  identity_id="E2OAC1",
)


def aliases_in(aws: FakeAws, zone: HostedZone) -> set[tuple[str, str]]:
  return {
    (r["Name"], r["Type"])
    for r in aws.route53.records[zone.zone_id].values()
    if "AliasTarget" in r
  }


class TestEnsureAliases:
  def test_apex_and_www(self, aws: FakeAws, zone: HostedZone) -> None:
    binder = DnsAliasBinder(aws.route53)
    records = binder.ensure_aliases(zone, "example.test", True, EDGE)

    assert len(records) == 4
    assert aliases_in(aws, zone) == {
      ("example.test.", "A"),
      ("example.test.", "AAAA"),
      ("www.example.test.", "A"),
      ("www.example.test.", "AAAA"),
    }
    target = aws.route53.record(zone.zone_id, "www.example.test", "AAAA")["AliasTarget"]
    assert target == {
      "HostedZoneId": CLOUDFRONT_HOSTED_ZONE_ID,
      "DNSName": "d111111abcdef8.cloudfront.net.",
      "EvaluateTargetHealth": False,
    }
    assert len(aws.route53.batches) == 1

  def test_idempotent(self, aws: FakeAws, zone: HostedZone) -> None:
    binder = DnsAliasBinder(aws.route53)
    binder.ensure_aliases(zone, "example.test", True, EDGE)
    binder.ensure_aliases(zone, "example.test", True, EDGE)

    assert binder.changes == []
    assert len(aws.route53.batches) == 1

  def test_www_toggle(self, aws: FakeAws, zone: HostedZone) -> None:
    binder = DnsAliasBinder(aws.route53)
    binder.ensure_aliases(zone, "example.test", True, EDGE)
    apex = aws.route53.record(zone.zone_id, "example.test", "A")

    records = binder.ensure_aliases(zone, "example.test", False, EDGE)

    assert {r.name for r in records} == {"example.test"}
    assert aws.route53.record(zone.zone_id, "www.example.test", "A") is None
    assert aws.route53.record(zone.zone_id, "www.example.test", "AAAA") is None
    assert aws.route53.record(zone.zone_id, "example.test", "A") == apex
    assert [c.action for c in binder.changes] == ["delete", "delete"]

    binder.ensure_aliases(zone, "example.test", True, EDGE)
    assert ("www.example.test.", "A") in aliases_in(aws, zone)

  def test_retargets_to_new_distribution(self, aws: FakeAws, zone: HostedZone) -> None:
    binder = DnsAliasBinder(aws.route53)
    binder.ensure_aliases(zone, "example.test", False, EDGE)
    moved = EdgeDistribution(
      distribution_id="E2DIST",
      arn="arn:aws:cloudfront::123456789012:distribution/E2DIST",
      domain_name="d222222abcdef8.cloudfront.net",
      aliases=("example.test",),
      certificate_arn=EDGE.certificate_arn,
      identity_id=EDGE.identity_id,
    )

    binder.ensure_aliases(zone, "example.test", False, moved)

    target = aws.route53.record(zone.zone_id, "example.test", "A")["AliasTarget"]
    assert target["DNSName"] == "d222222abcdef8.cloudfront.net."
    assert len(binder.changes) == 2

  def test_unmanaged_www_left_alone_when_disabled(self, aws: FakeAws, zone: HostedZone) -> None:
    aws.route53.add_record(
      zone.zone_id,
      {"Name": "www.example.test.", "Type": "A", "TTL": 300, "ResourceRecords": [{"Value": "192.0.2.1"}]},
    )
    DnsAliasBinder(aws.route53).ensure_aliases(zone, "example.test", False, EDGE)
    assert aws.route53.record(zone.zone_id, "www.example.test", "A") is not None

  def test_other_records_untouched(self, aws: FakeAws, zone: HostedZone) -> None:
    mx = {"Name": "example.test.", "Type": "MX", "TTL": 300, "ResourceRecords": [{"Value": "10 mx.example.test."}]}
    aws.route53.add_record(zone.zone_id, mx)
    DnsAliasBinder(aws.route53).ensure_aliases(zone, "example.test", True, EDGE)
    assert aws.route53.record(zone.zone_id, "example.test", "MX") == mx


class TestConflicts:
  def test_cname(self, aws: FakeAws, zone: HostedZone) -> None:
    aws.route53.add_record(
      zone.zone_id,
      {"Name": "www.example.test.", "Type": "CNAME", "TTL": 300, "ResourceRecords": [{"Value": "elsewhere.test"}]},
    )
    with pytest.raises(AliasConflict) as excinfo:
      DnsAliasBinder(aws.route53).ensure_aliases(zone, "example.test", True, EDGE)
    assert excinfo.value.name == "www.example.test"
    assert aws.route53.batches == []

  def test_plain_a_record(self, aws: FakeAws, zone: HostedZone) -> None:
    aws.route53.add_record(
      zone.zone_id,
      {"Name": "example.test.", "Type": "A", "TTL": 300, "ResourceRecords": [{"Value": "192.0.2.1"}]},
    )
    with pytest.raises(AliasConflict):
      DnsAliasBinder(aws.route53).ensure_aliases(zone, "example.test", False, EDGE)

  def test_alias_to_load_balancer(self, aws: FakeAws, zone: HostedZone) -> None:
    aws.route53.add_record(
      zone.zone_id,
      {
        "Name": "example.test.",
        "Type": "AAAA",
        "AliasTarget": {
          "HostedZoneId": "Z35SXDOTRQ7X7K",
          "DNSName": "my-lb.us-east-1.elb.amazonaws.com.",
          "EvaluateTargetHealth": True,
        },
      },
    )
    with pytest.raises(AliasConflict, match="AAAA"):
      DnsAliasBinder(aws.route53).ensure_aliases(zone, "example.test", False, EDGE)

  def test_weighted_cloudfront_alias(self) -> None:
    weighted = {**alias_rrset("example.test", "A", EDGE.domain_name), "SetIdentifier": "blue", "Weight": 50}
    with pytest.raises(AliasConflict):
      plan_aliases("example.test", False, EDGE.domain_name, {("example.test", "A"): weighted})


class TestPlanAliases:
  def test_empty_zone(self) -> None:
    batch, changes = plan_aliases("example.test", True, EDGE.domain_name, {})
    assert [c["Action"] for c in batch] == ["UPSERT"] * 4
    assert len(changes) == 4

  def test_endpoint_comparison_ignores_trailing_dot_and_case(self) -> None:
    observed = {
      ("example.test", t): alias_rrset("example.test", t, "D111111ABCDEF8.cloudfront.net.")
      for t in ("A", "AAAA")
    }
    assert plan_aliases("example.test", False, EDGE.domain_name, observed) == ([], [])
