"""Bucket policy granting one distribution read access to the origin."""

import json
import logging
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Any

from botocore.exceptions import ClientError

from ..aws import aws_errors, error_code
from ..errors import PolicyConflict, ProvisioningError
from ..models import AccessIdentity, Change, EdgeDistribution, OriginStore

logger = logging.getLogger(__name__)

COMPONENT = "access_policy"

STATEMENT_SID = "SiteConvergeEdgeRead"
EDGE_SERVICE = "cloudfront.amazonaws.com"


def read_statement(store: OriginStore, distribution: EdgeDistribution) -> dict[str, Any]:
  """Allow GetObject to CloudFront only when the request comes from ``distribution``."""
  return {
    "Sid": STATEMENT_SID,
    "Effect": "Allow",
    "Principal": {"Service": EDGE_SERVICE},
    "Action": "s3:GetObject",
    "Resource": f"{store.arn}/*",
    "Condition": {"StringEquals": {"AWS:SourceArn": distribution.arn}},
  }


def plan_policy(
  store: OriginStore,
  distribution: EdgeDistribution,
  observed: dict[str, Any] | None,
) -> tuple[dict[str, Any], list[Change]]:
  """Desired policy document plus the change needed, if any.

  Foreign Deny statements are carried over. Foreign Allow statements would
  widen access beyond the distribution and raise PolicyConflict.
  """
  statements = (observed or {}).get("Statement", [])
  if isinstance(statements, dict):
    statements = [statements]

  foreign = [s for s in statements if s.get("Sid") != STATEMENT_SID]
  allows = [s for s in foreign if s.get("Effect") == "Allow"]
  if allows:
    raise PolicyConflict(store.name, [s.get("Sid", "") for s in allows])

  desired = {
    "Version": "2012-10-17",
    "Statement": [*foreign, read_statement(store, distribution)],
  }
  if observed is not None and observed.get("Statement") == desired["Statement"]:
    return desired, []
  action = "create" if observed is None else "update"
  return desired, [Change(COMPONENT, action, store.name, f"read for {distribution.distribution_id}")]


class AccessPolicyBinder:
  """Owns the origin bucket's policy."""

  def __init__(self, s3: Any) -> None:
    self.s3 = s3
    self.changes: list[Change] = []

  def observe(self, bucket: str) -> dict[str, Any] | None:
    try:
      response = self.s3.get_bucket_policy(Bucket=bucket)
    except ClientError as e:
      if error_code(e) == "NoSuchBucketPolicy":
        return None
      raise
    return dict(json.loads(response["Policy"]))

  def grant_read(
    self,
    store: OriginStore,
    identity: AccessIdentity,
    distribution: EdgeDistribution,
  ) -> dict[str, Any]:
    """Scope read access on ``store`` to ``distribution``; returns the policy."""
    if distribution.identity_id != identity.oac_id:
      raise ProvisioningError(
        COMPONENT,
        f"Distribution {distribution.distribution_id} does not use identity {identity.name}",
      )

    with aws_errors(COMPONENT):
      policy, self.changes = plan_policy(store, distribution, self.observe(store.name))
      if self.changes:
        self.s3.put_bucket_policy(Bucket=store.name, Policy=json.dumps(policy))
        logger.info(
          "Granted %s read access on %s", distribution.distribution_id, store.name
        )
    return policy


@dataclass
class AccessRequest:
  """A simulated request against the bucket."""

  action: str
  resource: str
  service: str = EDGE_SERVICE
  context: dict[str, str] = field(default_factory=dict)


def _as_list(value: Any) -> list[Any]:
  return value if isinstance(value, list) else [value]


def _condition_met(operator: str, expected: dict[str, Any], context: dict[str, str]) -> bool:
  lowered = {k.lower(): v for k, v in context.items()}
  for key, values in expected.items():
    actual = lowered.get(key.lower())
    if actual is None:
      return False
    values = [str(v) for v in _as_list(values)]
    if operator in ("StringEquals", "ArnEquals"):
      if actual not in values:
        return False
    elif operator in ("StringLike", "ArnLike"):
      if not any(fnmatchcase(actual, v) for v in values):
        return False
    elif operator == "Bool":
      if actual.lower() not in [v.lower() for v in values]:
        return False
    else:
      return False
  return True


def _matches(statement: dict[str, Any], request: AccessRequest) -> bool:
  principal = statement.get("Principal", {})
  if principal != "*":
    principal = principal if isinstance(principal, dict) else {}
    services = _as_list(principal.get("Service", []))
    if "*" not in _as_list(principal.get("AWS", [])) and request.service not in services:
      return False
  if not any(fnmatchcase(request.action, a) for a in _as_list(statement.get("Action", []))):
    return False
  if not any(fnmatchcase(request.resource, r) for r in _as_list(statement.get("Resource", []))):
    return False
  conditions = statement.get("Condition", {})
  return all(_condition_met(op, expected, request.context) for op, expected in conditions.items())


def evaluate(policy: dict[str, Any], request: AccessRequest) -> bool:
  """True if ``policy`` allows ``request``; explicit Deny wins."""
  statements = _as_list(policy.get("Statement", []))
  matched = [s for s in statements if _matches(s, request)]
  if any(s.get("Effect") == "Deny" for s in matched):
    return False
  return any(s.get("Effect") == "Allow" for s in matched)
