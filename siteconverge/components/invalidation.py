"""CloudFront cache invalidation after a publish."""

import logging
import time
from typing import Any

from ..aws import aws_errors
from ..models import Change, EdgeDistribution

logger = logging.getLogger(__name__)

COMPONENT = "invalidation"

# Past this many paths a wildcard is cheaper than listing them
MAX_PATHS = 15


def invalidation_paths(keys: list[str]) -> list[str]:
  """Paths to invalidate for changed object keys.

  The rewrite rule maps directory URLs onto ``index.html`` before the cache
  lookup, so an object's key path is its only cache key.
  """
  paths = sorted({f"/{key}" for key in keys})
  if len(paths) > MAX_PATHS:
    return ["/*"]
  return paths


def invalidate(cloudfront: Any, distribution: EdgeDistribution, keys: list[str]) -> Change | None:
  """Create one invalidation covering ``keys``; no-op for an empty list."""
  if not keys:
    return None

  paths = invalidation_paths(keys)
  with aws_errors(COMPONENT):
    response = cloudfront.create_invalidation(
      DistributionId=distribution.distribution_id,
      InvalidationBatch={
        "Paths": {"Quantity": len(paths), "Items": paths},
        "CallerReference": str(time.time()),
      },
    )
  invalidation_id = response["Invalidation"]["Id"]
  logger.info("Created invalidation %s for %d paths", invalidation_id, len(paths))
  return Change(COMPONENT, "invalidate", distribution.distribution_id, ", ".join(paths))
