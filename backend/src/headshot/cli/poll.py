"""CLI command for polling a generation job until it finishes.

Usage:
    python -m headshot.cli.poll JOB_ID --user-id USER [OPTIONS]

Examples:
    # Poll with the configured interval and attempt budget
    python -m headshot.cli.poll v3_image-to-image_1717000000000_ab12cd3 --user-id user_123

    # Poll a remote deployment, checking every 5 seconds at most 24 times
    python -m headshot.cli.poll JOB_ID --user-id user_123 \\
        --base-url https://api.example.com --interval 5 --max-attempts 24
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from typing import Sequence

import httpx
import structlog

from headshot.core.config import Settings, configure_logging
from headshot.models.generation_job import GenerationStatus
from headshot.services.exceptions import GenerationFailedError, PollTimeoutError
from headshot.services.poller import StatusFetcher, StatusPoller
from headshot.services.providers.base import GenerationResult

logger = structlog.get_logger()


def parse_args(argv: Sequence[str] | None = None) -> Namespace:
    """Parse ``JOB_ID`` plus connection and polling options."""
    parser = ArgumentParser(
        description="Poll a headshot generation job until it completes",
        epilog="Exit codes: 0 completed, 1 failed or error, 3 still processing",
    )

    parser.add_argument("job_id", help="Job id returned by POST /api/generations")

    parser.add_argument("--user-id", required=True, help="Owning user (sent as X-User-Id)")

    parser.add_argument(
        "--base-url",
        help="API base URL (default: http://localhost:PORT)",
    )

    parser.add_argument("--interval", type=float, help="Seconds between checks")

    parser.add_argument("--max-attempts", type=int, help="Checks before giving up")

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every poll attempt at DEBUG level",
    )

    return parser.parse_args(argv)


def make_http_fetcher(client: httpx.AsyncClient, user_id: str) -> StatusFetcher:
    """Build a status fetcher that reads GET /api/generations/{job_id}."""

    async def fetch(job_id: str) -> GenerationResult:
        response = await client.get(f"/api/generations/{job_id}", headers={"X-User-Id": user_id})
        response.raise_for_status()
        body = response.json()
        return GenerationResult(
            status=GenerationStatus(body["status"]),
            image_url=body.get("image_url"),
            error=body.get("error"),
        )

    return fetch


def print_progress(value: int) -> None:
    print(f"\rProgress: {value:3d}%", end="", flush=True)


async def async_main(argv: Sequence[str] | None = None) -> int:
    """Poll one job to a terminal state and print the outcome.

    Returns:
        Exit code: 0 (completed), 1 (failed or error), 3 (still processing)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    base_url = args.base_url or f"http://localhost:{settings.port}"
    interval = args.interval if args.interval is not None else settings.status_poll_interval_seconds
    max_attempts = args.max_attempts or settings.status_poll_max_attempts

    logger.info("cli.started", job_id=args.job_id, base_url=base_url, max_attempts=max_attempts)

    try:
        async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as client:
            poller = StatusPoller(
                make_http_fetcher(client, args.user_id),
                interval=interval,
                max_attempts=max_attempts,
            )
            result = await poller.poll(args.job_id, on_progress=print_progress)

        print(f"\nCompleted: {result.image_url}")
        return 0

    except GenerationFailedError as e:
        print(f"\nGeneration failed: {e.error}", file=sys.stderr)
        return 1

    except PollTimeoutError as e:
        print(f"\n{e}", file=sys.stderr)
        return 3

    except httpx.HTTPError as e:
        logger.error("cli.http_error", error=str(e), error_type=type(e).__name__)
        print(f"Request failed: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nPolling interrupted by user", file=sys.stderr)
        return 130


def main() -> None:
    """Console-script entry point (headshot-poll)."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
