"""Tests for the CloudFront distribution manager."""

import pytest
from fake_aws import FakeAws

from siteconverge.components.distribution import (
  CacheSettings,
  DistributionManager,
  build_distribution_config,
  managed_view,
  merge_config,
  plan_distribution,
)
from siteconverge.errors import ProvisioningError
from siteconverge.models import (
  AccessIdentity,
  CertificateRecord,
  DomainTopology,
  OriginStore,
  ValidationState,
)
from siteconverge.rewrite import function_code

ORIGIN = OriginStore(name="example.test", region="us-east-1")


def issued(aws: FakeAws, names: tuple[str, ...] = ("example.test", "www.example.test")) -> CertificateRecord:
  arn = aws.acm.add_certificate(list(names))
  return CertificateRecord(arn=arn, domains=frozenset(names), state=ValidationState.VALIDATED)


def desired_config(topology: DomainTopology, **overrides: object) -> dict:
  kwargs: dict = {
    "topology": topology,
    "origin": ORIGIN,
    "identity": AccessIdentity(oac_id="E2OAC1", name="example-test-oac"),
    "certificate_arn": "arn:aws:acm:us-east-1:123456789012:certificate/abc",
    "function_arn": "arn:aws:cloudfront::123456789012:function/example-test-rewrite",
    "cache": CacheSettings(),
  }
  kwargs.update(overrides)
  return build_distribution_config(**kwargs)


class TestDistributionConfig:
  """Shape of the desired distribution config."""

  def test_tls_and_protocols(self, topology: DomainTopology) -> None:
    config = desired_config(topology)
    viewer = config["ViewerCertificate"]
    assert viewer["MinimumProtocolVersion"] == "TLSv1.2_2021"
    assert viewer["SSLSupportMethod"] == "sni-only"
    assert config["DefaultCacheBehavior"]["ViewerProtocolPolicy"] == "redirect-to-https"

  def test_cache_behavior(self, topology: DomainTopology) -> None:
    behavior = desired_config(topology)["DefaultCacheBehavior"]
    assert behavior["AllowedMethods"]["Items"] == ["GET", "HEAD", "OPTIONS"]
    assert behavior["AllowedMethods"]["CachedMethods"]["Items"] == ["GET", "HEAD", "OPTIONS"]
    assert behavior["Compress"] is True
    assert behavior["ForwardedValues"]["QueryString"] is False
    assert behavior["ForwardedValues"]["Cookies"] == {"Forward": "none"}
    assert behavior["ForwardedValues"]["Headers"] == {"Quantity": 0}
    assert (behavior["MinTTL"], behavior["DefaultTTL"], behavior["MaxTTL"]) == (0, 3600, 86400)

  def test_configurable_ttls(self, topology: DomainTopology) -> None:
    behavior = desired_config(topology, cache=CacheSettings(60, 600, 6000))["DefaultCacheBehavior"]
    assert (behavior["MinTTL"], behavior["DefaultTTL"], behavior["MaxTTL"]) == (60, 600, 6000)

  def test_rewrite_on_viewer_request(self, topology: DomainTopology) -> None:
    associations = desired_config(topology)["DefaultCacheBehavior"]["FunctionAssociations"]
    assert associations["Items"] == [
      {
        "FunctionARN": "arn:aws:cloudfront::123456789012:function/example-test-rewrite",
        "EventType": "viewer-request",
      }
    ]

  def test_not_found_page(self, topology: DomainTopology) -> None:
    (error,) = desired_config(topology, error_document="missing.html")["CustomErrorResponses"]["Items"]
    assert error["ErrorCode"] == 404
    assert error["ResponsePagePath"] == "/missing.html"
    assert error["ResponseCode"] == "404"

  def test_private_origin(self, topology: DomainTopology) -> None:
    (origin,) = desired_config(topology)["Origins"]["Items"]
    assert origin["DomainName"] == "example.test.s3.us-east-1.amazonaws.com"
    assert origin["OriginAccessControlId"] == "E2OAC1"
    assert origin["S3OriginConfig"] == {"OriginAccessIdentity": ""}

  def test_aliases_follow_www_flag(self) -> None:
    apex_only = DomainTopology(domain="example.test", include_www=False)
    assert desired_config(apex_only)["Aliases"] == {"Quantity": 1, "Items": ["example.test"]}


class TestPlanDistribution:
  def test_absent(self, topology: DomainTopology) -> None:
    assert [c.action for c in plan_distribution(desired_config(topology), None, "example.test")] == ["create"]

  def test_echoed_defaults_are_not_drift(self, topology: DomainTopology) -> None:
    desired = desired_config(topology)
    observed = merge_config(desired, desired)
    observed["WebACLId"] = ""
    observed["Origins"]["Items"][0]["ConnectionAttempts"] = 3
    assert plan_distribution(desired, observed, "example.test") == []

  def test_certificate_drift(self, topology: DomainTopology) -> None:
    desired = desired_config(topology)
    observed = desired_config(topology, certificate_arn="arn:old")
    (change,) = plan_distribution(desired, observed, "example.test")
    assert change.action == "update"
    assert change.detail == "certificate"

  def test_managed_view_ignores_order(self, topology: DomainTopology) -> None:
    config = desired_config(topology)
    reordered = desired_config(topology)
    reordered["Aliases"]["Items"].reverse()
    assert managed_view(config) == managed_view(reordered)


class TestMergeConfig:
  def test_keeps_caller_reference_and_unmanaged_fields(self, topology: DomainTopology) -> None:
    observed = desired_config(topology)
    observed["CallerReference"] = "created-by-hand"
    observed["Logging"] = {"Enabled": True, "Bucket": "logs.s3.amazonaws.com"}
    observed["Origins"]["Items"][0]["ConnectionTimeout"] = 5

    merged = merge_config(observed, desired_config(topology, certificate_arn="arn:new"))

    assert merged["CallerReference"] == "created-by-hand"
    assert merged["Logging"]["Enabled"] is True
    assert merged["Origins"]["Items"][0]["ConnectionTimeout"] == 5
    assert merged["ViewerCertificate"]["ACMCertificateArn"] == "arn:new"

  def test_drops_cache_policy(self, topology: DomainTopology) -> None:
    observed = desired_config(topology)
    observed["DefaultCacheBehavior"]["CachePolicyId"] = "658327ea-f89d-4fab-a63d-7e88639e58f6"
    merged = merge_config(observed, desired_config(topology))
    assert "CachePolicyId" not in merged["DefaultCacheBehavior"]


class TestEnsureDistribution:
  def test_creates_distribution(self, aws: FakeAws, topology: DomainTopology) -> None:
    certificate = issued(aws)
    manager = DistributionManager(aws.cloudfront)

    edge = manager.ensure_distribution(topology, ORIGIN, certificate)

    stored = aws.cloudfront.distributions[edge.distribution_id]
    assert edge.aliases == ("example.test", "www.example.test")
    assert edge.certificate_arn == certificate.arn
    assert stored["DistributionConfig"]["CallerReference"] == "siteconverge-example.test"
    assert {"Key": "Project", "Value": "portfolio"} in stored["Tags"]
    assert manager.identity is not None
    assert edge.identity_id == manager.identity.oac_id
    assert [c.target for c in manager.changes] == [
      "example-test-oac",
      "example-test-rewrite",
      "example.test",
    ]

  def test_origin_access_control_settings(self, aws: FakeAws, topology: DomainTopology) -> None:
    DistributionManager(aws.cloudfront).ensure_distribution(topology, ORIGIN, issued(aws))
    (oac,) = aws.cloudfront.oacs.values()
    assert oac["Name"] == "example-test-oac"
    assert oac["SigningProtocol"] == "sigv4"
    assert oac["SigningBehavior"] == "always"
    assert oac["OriginAccessControlOriginType"] == "s3"

  def test_rewrite_function_published(self, aws: FakeAws, topology: DomainTopology) -> None:
    DistributionManager(aws.cloudfront).ensure_distribution(topology, ORIGIN, issued(aws))
    live = aws.cloudfront.functions["example-test-rewrite"]["LIVE"]
    assert live["code"] == function_code().encode()
    assert live["config"]["Runtime"] == "cloudfront-js-2.0"

  def test_second_run_is_a_no_op(self, aws: FakeAws, topology: DomainTopology) -> None:
    certificate = issued(aws)
    manager = DistributionManager(aws.cloudfront)
    first = manager.ensure_distribution(topology, ORIGIN, certificate)

    second = manager.ensure_distribution(topology, ORIGIN, certificate)

    assert second.distribution_id == first.distribution_id
    assert manager.changes == []
    assert aws.cloudfront.updates == []
    assert len(aws.cloudfront.distributions) == 1
    assert len(aws.cloudfront.oacs) == 1

  def test_certificate_swap_is_in_place(self, aws: FakeAws, topology: DomainTopology) -> None:
    manager = DistributionManager(aws.cloudfront)
    first = manager.ensure_distribution(topology, ORIGIN, issued(aws))
    replacement = issued(aws)

    second = manager.ensure_distribution(topology, ORIGIN, replacement)

    assert second.distribution_id == first.distribution_id
    assert second.certificate_arn == replacement.arn
    assert aws.cloudfront.updates == [first.distribution_id]
    assert [c.detail for c in manager.changes] == ["certificate"]

  def test_retries_after_concurrent_update(self, aws: FakeAws, topology: DomainTopology) -> None:
    manager = DistributionManager(aws.cloudfront)
    first = manager.ensure_distribution(topology, ORIGIN, issued(aws))
    aws.cloudfront.conflicts = 2

    second = manager.ensure_distribution(topology, ORIGIN, issued(aws))

    assert aws.cloudfront.updates == [first.distribution_id]
    assert second.certificate_arn != first.certificate_arn

  def test_gives_up_after_repeated_conflicts(self, aws: FakeAws, topology: DomainTopology) -> None:
    manager = DistributionManager(aws.cloudfront)
    manager.ensure_distribution(topology, ORIGIN, issued(aws))
    aws.cloudfront.conflicts = 3

    with pytest.raises(ProvisioningError, match="PreconditionFailed"):
      manager.ensure_distribution(topology, ORIGIN, issued(aws))

  def test_updated_rewrite_code_republished(self, aws: FakeAws, topology: DomainTopology) -> None:
    certificate = issued(aws)
    manager = DistributionManager(aws.cloudfront)
    manager.ensure_distribution(topology, ORIGIN, certificate)

    manager.ensure_distribution(topology, ORIGIN, certificate, rewrite_code="function handler(e) { return e.request; }")

    live = aws.cloudfront.functions["example-test-rewrite"]["LIVE"]
    assert live["code"].startswith(b"function handler(e)")
    assert [(c.action, c.target) for c in manager.changes] == [("update", "example-test-rewrite")]
    # The function ARN is stable, so the distribution itself is untouched
    assert aws.cloudfront.updates == []

  def test_www_dropped_from_aliases(self, aws: FakeAws, topology: DomainTopology) -> None:
    manager = DistributionManager(aws.cloudfront)
    manager.ensure_distribution(topology, ORIGIN, issued(aws))
    apex_only = DomainTopology(domain="example.test", include_www=False, tags=topology.tags)

    edge = manager.ensure_distribution(apex_only, ORIGIN, issued(aws, ("example.test",)))

    assert edge.aliases == ("example.test",)
    assert len(aws.cloudfront.distributions) == 1

  def test_refuses_unvalidated_certificate(self, aws: FakeAws, topology: DomainTopology) -> None:
    pending = CertificateRecord(arn="arn:pending", domains=frozenset(), state=ValidationState.PENDING)
    with pytest.raises(ProvisioningError, match="unvalidated"):
      DistributionManager(aws.cloudfront).ensure_distribution(topology, ORIGIN, pending)
    assert aws.cloudfront.distributions == {}

  def test_alias_taken_by_other_distribution(self, aws: FakeAws, topology: DomainTopology) -> None:
    other = DomainTopology(domain="other.test", include_www=False)
    manager = DistributionManager(aws.cloudfront)
    manager.ensure_distribution(other, ORIGIN, issued(aws, ("other.test",)))
    aws.cloudfront.distributions[next(iter(aws.cloudfront.distributions))]["DistributionConfig"]["Aliases"] = {
      "Quantity": 2,
      "Items": ["other.test", "www.example.test"],
    }

    with pytest.raises(ProvisioningError, match="CNAMEAlreadyExists"):
      manager.ensure_distribution(topology, ORIGIN, issued(aws))

  def test_wait_deployed(self, aws: FakeAws, topology: DomainTopology) -> None:
    manager = DistributionManager(aws.cloudfront)
    edge = manager.ensure_distribution(topology, ORIGIN, issued(aws))
    manager.wait_deployed(edge)
    assert aws.cloudfront.waited == [edge.distribution_id]
