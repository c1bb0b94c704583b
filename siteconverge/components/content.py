"""Publish a built site directory into the origin bucket."""

import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..aws import aws_errors
from ..errors import ProvisioningError
from ..models import Change, OriginStore

logger = logging.getLogger(__name__)

COMPONENT = "content"


@dataclass
class PublishResult:
  uploaded: list[str] = field(default_factory=list)
  deleted: list[str] = field(default_factory=list)
  unchanged: int = 0

  @property
  def changed_keys(self) -> list[str]:
    return sorted([*self.uploaded, *self.deleted])

  def changes(self) -> list[Change]:
    return [Change(COMPONENT, "publish", k) for k in self.uploaded] + [
      Change(COMPONENT, "delete", k) for k in self.deleted
    ]


def file_md5(path: Path) -> str:
  digest = hashlib.md5()
  with open(path, "rb") as f:
    for chunk in iter(lambda: f.read(1024 * 1024), b""):
      digest.update(chunk)
  return digest.hexdigest()


# VCS metadata and OS droppings; other dot paths such as .well-known are published
IGNORED_NAMES = {".git", ".hg", ".svn", ".DS_Store", "Thumbs.db"}


def scan_artifacts(root: Path) -> dict[str, Path]:
  """Map object keys to files, skipping VCS and OS junk."""
  files = {}
  for path in sorted(root.rglob("*")):
    relative = path.relative_to(root)
    if not path.is_file() or any(part in IGNORED_NAMES for part in relative.parts):
      continue
    files[relative.as_posix()] = path
  return files


def plan_publish(
  local: dict[str, str], remote: dict[str, str], prune: bool
) -> tuple[list[str], list[str]]:
  """Keys to upload and keys to delete, given key -> md5 maps."""
  uploads = sorted(k for k, digest in local.items() if remote.get(k) != digest)
  deletes = sorted(set(remote) - set(local)) if prune else []
  return uploads, deletes


class ContentPublisher:
  """Sync an artifact directory to the bucket, uploading only changed files."""

  def __init__(self, s3: Any) -> None:
    self.s3 = s3

  def remote_digests(self, bucket: str) -> dict[str, str]:
    # Single-part PUT ETags are the object's MD5
    digests: dict[str, str] = {}
    kwargs: dict[str, Any] = {"Bucket": bucket}
    while True:
      response = self.s3.list_objects_v2(**kwargs)
      for obj in response.get("Contents", []):
        digests[obj["Key"]] = obj["ETag"].strip('"')
      if not response.get("IsTruncated"):
        return digests
      kwargs["ContinuationToken"] = response["NextContinuationToken"]

  def publish(self, store: OriginStore, artifact_dir: Path | str, prune: bool = False) -> PublishResult:
    root = Path(artifact_dir)
    if not root.is_dir():
      raise ProvisioningError(COMPONENT, f"Artifact directory {root} does not exist")

    files = scan_artifacts(root)
    local = {key: file_md5(path) for key, path in files.items()}

    with aws_errors(COMPONENT):
      remote = self.remote_digests(store.name)
      uploads, deletes = plan_publish(local, remote, prune)

      for key in uploads:
        content_type = mimetypes.guess_type(key)[0] or "application/octet-stream"
        with open(files[key], "rb") as body:
          self.s3.put_object(
            Bucket=store.name,
            Key=key,
            Body=body,
            ContentType=content_type,
          )
        logger.info("Uploaded %s", key)

      # delete_objects accepts at most 1000 keys per call
      for start in range(0, len(deletes), 1000):
        batch = deletes[start : start + 1000]
        self.s3.delete_objects(
          Bucket=store.name,
          Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
        )
        logger.info("Deleted %d stale objects", len(batch))

    return PublishResult(
      uploaded=uploads, deleted=deletes, unchanged=len(local) - len(uploads)
    )
