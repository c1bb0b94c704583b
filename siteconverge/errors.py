"""Errors raised during a convergence run."""


class ConvergenceError(Exception):
  """Base class for failures that abort a convergence run."""

  component = "pipeline"


class ConfigError(ValueError):
  """Invalid site configuration or domain topology."""


class ZoneNotFound(ConvergenceError):
  """No authoritative hosted zone owns the domain."""

  component = "zone"

  def __init__(self, domain: str) -> None:
    super().__init__(f"No public hosted zone found for {domain}")
    self.domain = domain


class CertificateValidationFailed(ConvergenceError):
  """ACM rejected the certificate or validation did not finish in time."""

  component = "certificate"

  def __init__(self, certificate_arn: str, reason: str) -> None:
    super().__init__(f"Certificate {certificate_arn} failed validation: {reason}")
    self.certificate_arn = certificate_arn
    self.reason = reason


class PolicyConflict(ConvergenceError):
  """The bucket already carries a policy this engine will not overwrite."""

  component = "access_policy"

  def __init__(self, bucket: str, sids: list[str]) -> None:
    super().__init__(
      f"Bucket {bucket} has foreign Allow statements: {', '.join(sids) or '<unnamed>'}"
    )
    self.bucket = bucket
    self.sids = sids


class AliasConflict(ConvergenceError):
  """A record name is already owned by a record set not created by this engine."""

  component = "dns"

  def __init__(self, name: str, record_type: str, detail: str) -> None:
    super().__init__(f"{record_type} record for {name} is not managed here: {detail}")
    self.name = name
    self.record_type = record_type


class ProvisioningError(ConvergenceError):
  """Any other AWS API failure, tagged with the component that hit it."""

  def __init__(self, component: str, message: str) -> None:
    super().__init__(f"[{component}] {message}")
    self.component = component
