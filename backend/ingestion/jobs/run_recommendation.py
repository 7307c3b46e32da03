from __future__ import annotations

"""Recommendation job: stream a player's games -> opening stats -> inference.

One run per (username, color). Progress is checkpointed to the configured
store, so an interrupted run picks up where it left off.

Run:
  python -m ingestion.jobs.run_recommendation <username> [--color black]
      [--time-controls blitz,rapid] [--since 2023-01-01]
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

# Ensure `backend/` is on sys.path so `import recommender...` works when run from repo root.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from ingestion.core.ingestion_controller import BatchSummary, IngestionController  # noqa: E402
from ingestion.core.outcome import PipelineResult, PipelineSuccess  # noqa: E402
from recommender.core.settings import load_settings  # noqa: E402


UTC = timezone.utc
logger = logging.getLogger("openingrec.jobs")
logger.setLevel(logging.INFO)

# Ensure logs are visible when run from a scheduler / console.
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _log(event: dict) -> None:
    # Structured logs only; never log raw game payloads.
    logger.info(json.dumps(event, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compute opening recommendations for a Lichess player.")
    parser.add_argument("username")
    parser.add_argument("--color", choices=["white", "black"], default="white")
    parser.add_argument(
        "--time-controls",
        default=None,
        help="Comma-separated subset of blitz,rapid,classical (default: all).",
    )
    parser.add_argument("--since", default=None, help="ISO date or unix ms; games before 2019 are never fetched.")
    parser.add_argument("--settings", type=Path, default=None, help="Optional settings YAML.")
    return parser


def result_to_event(result: PipelineResult) -> dict[str, Any]:
    event: dict[str, Any] = {"event": "run_finished", "success": result.success, "message": result.message}
    stats = result.validation_stats
    if stats is not None:
        event["validation"] = {
            "total_games_processed": stats.total_games_processed,
            "valid_games": stats.valid_games,
            "filtered_by_rating": stats.filtered_by_rating,
            "filtered_by_structure": stats.filtered_by_structure,
            "filtered_by_opening": stats.filtered_by_opening,
        }
    if isinstance(result, PipelineSuccess):
        event["num_openings"] = len(result.player_data.opening_stats)
        if result.recommendations is not None:
            event["request_id"] = result.recommendations.request_id
            event["recommendations"] = [
                r.model_dump(mode="json") for r in result.recommendations.recommendations
            ]
    else:
        event["reason"] = result.reason.value
    return event


async def run(args: argparse.Namespace) -> PipelineResult:
    settings = load_settings(args.settings)

    def on_batch(summary: BatchSummary) -> None:
        _log(
            {
                "event": "batch_complete",
                "batch": summary.batch_number,
                "games_in_batch": summary.games_in_batch,
                "valid_games_so_far": summary.valid_games_so_far,
                "num_games_needed": summary.num_games_needed,
                "until_unix_ms": summary.until_unix_ms,
            }
        )

    async with IngestionController.from_settings(settings) as controller:
        return await controller.process_username(
            args.username,
            color=args.color,
            time_controls=args.time_controls,
            since=args.since,
            on_status=lambda message: _log({"event": "status", "message": message}),
            on_batch=on_batch,
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _log(
        {
            "event": "run_started",
            "started_at": datetime.now(tz=UTC).isoformat(),
            "username": args.username,
            "color": args.color,
            "time_controls": args.time_controls,
            "since": args.since,
        }
    )
    try:
        result = asyncio.run(run(args))
    except (OSError, ValueError) as e:
        # Settings file unreadable or invalid; the controller itself never raises.
        _log({"event": "run_finished", "success": False, "reason": "configuration", "message": str(e)})
        return 1
    _log(result_to_event(result))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
