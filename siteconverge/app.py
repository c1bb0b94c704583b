#!/usr/bin/env python3
"""Command-line entry point: converge every configured site."""

import argparse
import logging
import sys
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError

from .aws import AwsClients
from .components.static_site import STEPS, RunReport, StaticSitePipeline
from .config import Config
from .errors import ConfigError


def print_report(report: RunReport) -> None:
  """Print per-component status for one site."""
  mark = "✓" if report.succeeded else "✗"
  print(f"{mark} {report.domain}")
  for step in STEPS:
    status = report.statuses[step]
    print(f"  {step:<14} {status.status}")
    for change in status.changes:
      print(f"    - {change}")
    if status.error:
      print(f"    ! {status.error}")


def main(argv: list[str] | None = None) -> int:
  """Load sites.yaml and converge the selected sites."""
  parser = argparse.ArgumentParser(description="Converge static site infrastructure")
  parser.add_argument(
    "--config",
    default="sites.yaml",
    help="Path to the sites configuration (default: sites.yaml)",
  )
  parser.add_argument(
    "--site",
    action="append",
    help="Only converge this domain (repeatable)",
  )
  parser.add_argument(
    "--artifacts",
    type=Path,
    help="Built site directory to publish after converging",
  )
  parser.add_argument("--profile", help="AWS profile to use")
  parser.add_argument(
    "--wait",
    action="store_true",
    help="Wait for distribution deployment before retiring old certificates",
  )
  parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
  args = parser.parse_args(argv)

  logging.basicConfig(
    level=logging.DEBUG if args.verbose else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )
  # botocore is very chatty at DEBUG
  logging.getLogger("botocore").setLevel(logging.WARNING)

  try:
    config = Config.from_yaml(args.config)
    sites = [config.get_site(d) for d in args.site] if args.site else config.sites
  except (OSError, ConfigError) as e:
    print(f"Error: {e}", file=sys.stderr)
    return 1

  if not sites:
    print("No sites configured", file=sys.stderr)
    return 1
  if args.artifacts is not None and len(sites) != 1:
    print("Error: --artifacts requires exactly one --site", file=sys.stderr)
    return 1

  try:
    session = boto3.Session(profile_name=args.profile)
  except BotoCoreError as e:
    print(f"Error: {e}", file=sys.stderr)
    return 1

  failed = []
  for site in sites:
    clients = AwsClients.from_session(session, region=site.region)
    pipeline = StaticSitePipeline(clients, site, wait_for_deployment=args.wait)
    report = pipeline.run(artifacts=args.artifacts)
    print_report(report)
    if not report.succeeded:
      failed.append(site.domain)

  print()
  print(f"Done! {len(sites) - len(failed)}/{len(sites)} sites converged")
  return 1 if failed else 0


if __name__ == "__main__":
  sys.exit(main())
