from __future__ import annotations

import argparse
import asyncio
import logging

from .app_logging import log_with_fields, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .events import Notifier
from .identity import IdentityResolver
from .orchestrator import AppOrchestrator
from .readiness import ArtifactReadinessTracker
from .releases import ReleaseCheckPoller
from .remote import HttpFetcher


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stackmanager", description="Local stack launcher and supervisor")
    parser.add_argument("--config", required=True, help="Path to stackmanager YAML config")
    parser.add_argument(
        "-b",
        "--build-directory",
        default=None,
        help="Use executables from this local build instead of downloading them",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Verify artifacts, start the stack and supervise it until stopped")
    subparsers.add_parser("verify", help="Check every artifact against its remote checksum once")
    subparsers.add_parser("check-release", help="Poll the release manifest once")
    subparsers.add_parser("identity", help="Resolve the running coordinator's address")
    return parser


def _open_runtime(config: AppConfig) -> logging.Logger:
    ensure_local_paths(config)
    return setup_logger(config.paths.log)


def cmd_run(config: AppConfig) -> int:
    logger = _open_runtime(config)
    orchestrator = AppOrchestrator(config, logger=logger)
    try:
        asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        log_with_fields(logger, logging.INFO, "shutdown", reason="keyboard_interrupt")
    return 0


async def _verify(config: AppConfig) -> bool:
    async with HttpFetcher(timeout=config.services.request_timeout_seconds) as http:
        tracker = ArtifactReadinessTracker(config, http, Notifier())
        outcome = await tracker.verify()
    if not outcome.network_available:
        print("network unavailable: artifact checksums could not be fetched")
    print("Artifacts:")
    for kind, state in outcome.state.as_dict().items():
        print(f"  {kind:24} {state}")
    return outcome.all_ready


def cmd_verify(config: AppConfig) -> int:
    _open_runtime(config)
    return 0 if asyncio.run(_verify(config)) else 1


async def _check_release(config: AppConfig) -> int:
    async with HttpFetcher(timeout=config.services.request_timeout_seconds) as http:
        poller = ReleaseCheckPoller(
            http,
            config.services.manifest_url,
            Notifier(),
            current_version=config.release.current_version,
            platform=config.platform,
            project=config.release.project,
            user_agent=config.release.user_agent,
        )
        update = await poller.check_once()
    if update is not None:
        print(f"There is an update available. Please download and install version {update.version}.")
        if update.url:
            print(f"  {update.url}")
        return 0
    latest = poller.latest.version if poller.latest else "unknown"
    print(f"up to date (running {config.release.current_version}, latest {latest})")
    return 0


def cmd_check_release(config: AppConfig) -> int:
    _open_runtime(config)
    return asyncio.run(_check_release(config))


async def _identity(config: AppConfig) -> int:
    async with HttpFetcher(timeout=config.services.request_timeout_seconds) as http:
        resolver = IdentityResolver(
            http,
            config.services.coordinator_url,
            config.services.directory_url,
            Notifier(),
            scheme=config.services.address_scheme,
            initial_delay=0.0,
            retry_delay=config.identity.retry_delay_seconds,
            max_attempts=config.identity.max_attempts,
            backoff_factor=config.identity.backoff_factor,
        )
        identity = await resolver.resolve()
    print(resolver.address)
    return 0 if identity.domain_id else 1


def cmd_identity(config: AppConfig) -> int:
    _open_runtime(config)
    return asyncio.run(_identity(config))


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config, build_directory=args.build_directory)

    if args.command == "run":
        return cmd_run(config)
    if args.command == "verify":
        return cmd_verify(config)
    if args.command == "check-release":
        return cmd_check_release(config)
    if args.command == "identity":
        return cmd_identity(config)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
