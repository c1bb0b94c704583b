"""AWS client bundle and error translation."""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ProvisioningError

# CloudFront only accepts ACM certificates from us-east-1
GLOBAL_REGION = "us-east-1"


@dataclass
class AwsClients:
  """The four service clients a convergence run talks to."""

  route53: Any
  acm: Any
  s3: Any
  cloudfront: Any

  @classmethod
  def from_session(
    cls, session: boto3.Session | None = None, region: str = GLOBAL_REGION
  ) -> "AwsClients":
    """Create clients from a boto3 session (default credentials if omitted)."""
    session = session or boto3.Session()
    return cls(
      route53=session.client("route53"),
      acm=session.client("acm", region_name=GLOBAL_REGION),
      s3=session.client("s3", region_name=region),
      cloudfront=session.client("cloudfront"),
    )


def error_code(e: ClientError) -> str:
  """Return the AWS error code of a ClientError."""
  return str(e.response.get("Error", {}).get("Code", ""))


@contextmanager
def aws_errors(component: str) -> Iterator[None]:
  """Re-raise unexpected AWS failures as ProvisioningError for ``component``."""
  try:
    yield
  except ClientError as e:
    raise ProvisioningError(component, str(e)) from e
  except BotoCoreError as e:
    raise ProvisioningError(component, str(e)) from e
