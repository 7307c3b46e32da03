"""
Ingestion controller: one run of the opening-recommendation pipeline.

Flow per run:
1. Parse the request and load the opening catalog (no network yet).
2. Wake the inference service in the background; fetch profile and rating.
3. Reconcile with any checkpoint (fresh start / delete and restart / resume).
4. Stream games in batches newest -> oldest, validate, accumulate, and save a
   checkpoint every N valid games.
5. Save, hand the aggregate to inference, store the recommendations and mark
   the checkpoint complete.

Whatever happens the caller gets a `PipelineResult`, never an exception.
Progress already made is saved on the way out so the next run can resume.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from ingestion.adapters.inference_adapter import InferenceClient
from ingestion.adapters.lichess_adapter import GameStreamParams, LichessClient
from ingestion.core.checkpoint_store import CheckpointStore
from ingestion.core.conflict_resolver import ConflictAction, resolve_storage_conflict
from ingestion.core.errors import (
    ConfigurationError,
    FetchError,
    InferenceError,
    IngestionError,
    InputValidationError,
    NoRatingError,
    RateLimitedError,
    ReferenceDataError,
    UserNotFoundError,
)
from ingestion.core.game_filter import GameValidationFilters, GameValidator
from ingestion.core.memory_monitor import MemoryMonitor
from ingestion.core.network_client import BackoffFetcher, RetryCallback
from ingestion.core.opening_catalog import OpeningCatalog, load_opening_catalog
from ingestion.core.opening_stats import (
    accumulate_opening_stats,
    create_empty_player_data,
    get_game_result,
    time_control_weight,
)
from ingestion.core.outcome import FailureReason, PipelineFailure, PipelineResult, PipelineSuccess
from ingestion.core.rating import estimate_num_games_to_stream
from ingestion.core.request import ProcessRequest, parse_request
from recommender.core.settings import PipelineSettings
from recommender.schemas.stats import PlayerData
from recommender.services.kv_store import KeyValueStore, create_kv_store
from recommender.services.recommendation_store import RecommendationStore

logger = logging.getLogger("openingrec.ingestion.controller")

# Most specific first.
_FAILURE_REASONS: tuple[tuple[type[IngestionError], FailureReason], ...] = (
    (InputValidationError, FailureReason.INVALID_INPUT),
    (ConfigurationError, FailureReason.CONFIGURATION),
    (ReferenceDataError, FailureReason.REFERENCE_DATA_UNAVAILABLE),
    (UserNotFoundError, FailureReason.USER_NOT_FOUND),
    (NoRatingError, FailureReason.NO_RATING),
    (RateLimitedError, FailureReason.RATE_LIMITED),
    (FetchError, FailureReason.UPSTREAM_ERROR),
    (InferenceError, FailureReason.INFERENCE_FAILED),
)


def failure_reason_for(error: IngestionError) -> FailureReason:
    for error_type, reason in _FAILURE_REASONS:
        if isinstance(error, error_type):
            return reason
    return FailureReason.UNEXPECTED


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    num_games_processed: int
    total_games_needed: int


@dataclass(frozen=True, slots=True)
class BatchSummary:
    batch_number: int
    games_in_batch: int
    valid_games_so_far: int
    num_games_needed: int
    until_unix_ms: Optional[int]


StatusCallback = Callable[[str], None]
ProgressCallback = Callable[[ProgressUpdate], None]
BatchCallback = Callable[[BatchSummary], None]


def _safe_call(callback: Optional[Callable[[Any], None]], value: Any) -> None:
    if callback is None:
        return
    try:
        callback(value)
    except Exception:  # noqa: BLE001
        logger.exception("Progress callback failed")


def _timestamp_of(game: dict[str, Any]) -> Optional[int]:
    created = game.get("createdAt")
    if isinstance(created, bool) or not isinstance(created, (int, float)) or not math.isfinite(created):
        return None
    return int(created)


class _RunState:
    """Mutable state of one run. Only the controller's task touches it."""

    def __init__(
        self,
        player_data: PlayerData,
        *,
        cursor: Optional[int] = None,
        newest: Optional[int] = None,
        num_games_so_far: int = 0,
    ) -> None:
        self.player_data = player_data
        # Oldest createdAt processed (the checkpoint's since_unix_ms).
        self.cursor = cursor
        self.newest = newest
        # Valid games from earlier runs (the checkpoint's fetch_progress).
        self.num_games_so_far = num_games_so_far
        self.valid_this_session = 0
        self.total_processed = 0

    @property
    def total_valid(self) -> int:
        return self.num_games_so_far + self.valid_this_session

    def observe(self, created_at: int) -> None:
        if self.cursor is None or created_at < self.cursor:
            self.cursor = created_at
        if self.newest is None or created_at > self.newest:
            self.newest = created_at


class IngestionController:
    """
    Wires the fetcher, decoder, validator, accumulator and stores together.

    Construct with explicit collaborators (tests) or via `from_settings`.
    """

    def __init__(
        self,
        *,
        settings: PipelineSettings,
        lichess: LichessClient,
        inference: InferenceClient,
        checkpoints: CheckpointStore,
        recommendations: RecommendationStore,
        catalog_loader: Callable[..., OpeningCatalog] = load_opening_catalog,
        fetcher: Optional[BackoffFetcher] = None,
    ) -> None:
        self.settings = settings
        self.lichess = lichess
        self.inference = inference
        self.checkpoints = checkpoints
        self.recommendations = recommendations
        self._catalog_loader = catalog_loader
        self._fetcher = fetcher

    @classmethod
    def from_settings(
        cls,
        settings: PipelineSettings,
        *,
        client: Optional[httpx.AsyncClient] = None,
        kv: Optional[KeyValueStore] = None,
        **fetcher_kwargs: Any,
    ) -> "IngestionController":
        fetcher = BackoffFetcher(
            client,
            max_retries=settings.max_retries,
            base_delay_seconds=settings.base_delay_seconds,
            timeout_seconds=settings.request_timeout_seconds,
            **fetcher_kwargs,
        )
        store = kv if kv is not None else create_kv_store(settings.storage_url)
        return cls(
            settings=settings,
            lichess=LichessClient(fetcher, base_url=settings.lichess_base_url),
            inference=InferenceClient(
                fetcher,
                base_url=settings.inference_base_url,
                api_token=settings.inference_api_token,
            ),
            checkpoints=CheckpointStore(
                store,
                key_prefix=settings.key_prefix,
                max_age_ms=settings.checkpoint_max_age_ms,
                quota_warning_bytes=settings.storage_quota_warning_bytes,
            ),
            recommendations=RecommendationStore(store, key_prefix=settings.key_prefix),
            fetcher=fetcher,
        )

    async def aclose(self) -> None:
        if self._fetcher is not None:
            await self._fetcher.close()

    async def __aenter__(self) -> "IngestionController":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def process_username(
        self,
        username: Any,
        *,
        color: Any = None,
        time_controls: Any = None,
        since: Any = None,
        on_status: Optional[StatusCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_batch: Optional[BatchCallback] = None,
    ) -> PipelineResult:
        try:
            request = parse_request(username, color, time_controls, since)
        except InputValidationError as e:
            return PipelineFailure(reason=FailureReason.INVALID_INPUT, message=str(e))
        return await self.process(request, on_status=on_status, on_progress=on_progress, on_batch=on_batch)

    async def process(
        self,
        request: ProcessRequest,
        *,
        on_status: Optional[StatusCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_batch: Optional[BatchCallback] = None,
    ) -> PipelineResult:
        logger.info(f"Starting processing for: {request.username} ({request.color.value})")
        on_retry: Optional[RetryCallback] = (lambda message, _attempt: _safe_call(on_status, message)) if on_status else None

        state: Optional[_RunState] = None
        validator: Optional[GameValidator] = None
        wake_task: Optional[asyncio.Task[Any]] = None
        try:
            catalog = self._catalog_loader(self.settings.artifacts_dir, request.color)

            # The service sleeps when idle; wake it while we stream.
            wake_task = asyncio.create_task(self.inference.wake_up())

            user_info = await self.lichess.fetch_user_rating_and_profile(request.username, on_retry=on_retry)
            estimated_total = estimate_num_games_to_stream(
                user_info.profile, request.time_controls, request.since_unix_ms
            )
            _safe_call(on_progress, ProgressUpdate(num_games_processed=0, total_games_needed=estimated_total))

            state = self._initial_state(request, user_info.rating)
            validator = GameValidator(
                GameValidationFilters(
                    opening_names_to_training_ids=catalog.names_to_training_ids,
                    max_rating_delta=self.settings.max_rating_delta,
                    min_num_plies=self.settings.min_num_plies,
                    valid_statuses=self.settings.valid_statuses,
                )
            )

            await self._stream(request, state, validator, estimated_total, on_retry, on_progress, on_batch)
            validator.stats.log_summary()

            if state.total_valid == 0:
                return PipelineFailure(
                    reason=FailureReason.NO_DATA,
                    message=f"No valid games found for {request.username} (checked {state.total_processed}).",
                    validation_stats=validator.stats,
                )

            # Streaming done; inference not yet.
            self._save(state, is_complete=False)

            # Harmless if still running; never raises.
            await wake_task
            recommendations = await self.inference.predict(state.player_data)

            saved = self.recommendations.save(request.username, request.color, recommendations)
            if saved.success:
                logger.info(
                    f"[Recommendations] Saved {len(recommendations.recommendations)} "
                    f"recommendations for {request.username} ({request.color.value})"
                )
            else:
                logger.warning(f"[Recommendations] Failed to save recommendations: {saved.error}")

            self._save(state, is_complete=True)
            return PipelineSuccess(
                player_data=state.player_data,
                message=(
                    f"Analysed {state.total_valid} games across "
                    f"{len(state.player_data.opening_stats)} openings for {request.username}."
                ),
                recommendations=recommendations,
                validation_stats=validator.stats,
            )
        except IngestionError as e:
            logger.warning(f"Run failed for {request.username}: {e}")
            self._preserve_progress(state)
            return PipelineFailure(
                reason=failure_reason_for(e),
                message=str(e),
                validation_stats=validator.stats if validator else None,
            )
        except Exception as e:  # noqa: BLE001
            logger.exception(f"Unexpected error processing {request.username}")
            self._preserve_progress(state)
            return PipelineFailure(
                reason=FailureReason.UNEXPECTED,
                message=str(e) or "An unknown error occurred",
                validation_stats=validator.stats if validator else None,
            )
        finally:
            if wake_task is not None and not wake_task.done():
                wake_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await wake_task

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _initial_state(self, request: ProcessRequest, rating: float) -> _RunState:
        existing = self.checkpoints.load(request.username, request.color)
        resolution = resolve_storage_conflict(
            existing,
            requested_time_controls=request.time_controls,
            requested_since_unix_ms=request.since_unix_ms,
        )
        logger.info(f"[Conflict Resolution] {resolution.action.value}: {resolution.reason}")

        if resolution.action == ConflictAction.RESUME and resolution.existing is not None:
            stored = resolution.existing
            logger.info(f"Resuming with cached data for {request.username} ({request.color.value})")
            return _RunState(
                stored.player_data,
                cursor=stored.since_unix_ms,
                newest=stored.newest_game_unix_ms,
                num_games_so_far=stored.fetch_progress,
            )

        if resolution.action == ConflictAction.DELETE_AND_RESTART:
            self.checkpoints.delete(request.username, request.color)

        return _RunState(
            create_empty_player_data(request.username, rating, request.color, request.time_controls)
        )

    async def _stream(
        self,
        request: ProcessRequest,
        state: _RunState,
        validator: GameValidator,
        estimated_total: int,
        on_retry: Optional[RetryCallback],
        on_progress: Optional[ProgressCallback],
        on_batch: Optional[BatchCallback],
    ) -> None:
        settings = self.settings
        num_needed = max(0, settings.max_games_to_fetch - state.num_games_so_far)
        if num_needed == 0:
            logger.info(f"Max games reached in checkpoint ({state.num_games_so_far}); not streaming")
            return

        catalog = validator.filters.opening_names_to_training_ids
        memory = MemoryMonitor(settings.track_memory, settings.memory_sample_interval)
        until = state.cursor - 1 if state.cursor is not None else None
        batch_number = 0

        with memory:
            while state.valid_this_session < num_needed:
                batch_number += 1
                params = GameStreamParams(
                    username=request.username,
                    color=request.color,
                    time_controls=request.time_controls,
                    max_games=min(settings.batch_size, num_needed - state.valid_this_session),
                    since_unix_ms=request.since_unix_ms,
                    until_unix_ms=until,
                )
                games_in_batch = 0

                async with contextlib.aclosing(self.lichess.stream_games(params, on_retry=on_retry)) as games:
                    async for game in games:
                        games_in_batch += 1
                        state.total_processed += 1
                        created_at = _timestamp_of(game)
                        if created_at is not None:
                            state.observe(created_at)
                        memory.check(state.total_processed, len(state.player_data.opening_stats))

                        if not validator.is_valid(game):
                            continue

                        opening = game["opening"]
                        name = opening["name"]
                        accumulate_opening_stats(
                            state.player_data,
                            name,
                            catalog[name],
                            str(opening.get("eco") or ""),
                            get_game_result(game, request.color),
                            time_control_weight(game.get("speed"), settings.time_control_weights),
                        )
                        state.valid_this_session += 1
                        _safe_call(
                            on_progress,
                            ProgressUpdate(num_games_processed=state.total_valid, total_games_needed=estimated_total),
                        )

                        if state.valid_this_session % settings.save_every_n_games == 0 and state.cursor is not None:
                            if self._save(state, is_complete=False):
                                logger.info(f"[Incremental Save] Saved progress at {state.total_valid} games")

                        if state.valid_this_session >= num_needed:
                            break

                if games_in_batch == 0:
                    logger.info("No more games available from Lichess")
                    break

                previous_until = until
                if state.cursor is not None:
                    # Strictly older than the oldest game seen.
                    until = state.cursor - 1
                _safe_call(
                    on_batch,
                    BatchSummary(
                        batch_number=batch_number,
                        games_in_batch=games_in_batch,
                        valid_games_so_far=state.total_valid,
                        num_games_needed=num_needed,
                        until_unix_ms=until,
                    ),
                )
                logger.info(
                    f"[Batch Complete] Fetched {games_in_batch} games in this batch. "
                    f"Valid games so far: {state.valid_this_session}/{num_needed}"
                )
                if until == previous_until:
                    logger.warning("Pagination cursor did not move; stopping")
                    break

    def _save(self, state: _RunState, *, is_complete: bool) -> bool:
        if state.cursor is None:
            logger.warning("Skipping checkpoint save: no game timestamp available yet")
            return False
        result = self.checkpoints.save(
            state.player_data,
            fetch_progress=state.total_valid,
            is_complete=is_complete,
            since_unix_ms=state.cursor,
            newest_game_unix_ms=state.newest,
        )
        if not result.success:
            logger.warning(f"Checkpoint save failed, continuing in memory: {result.error}")
        return result.success

    def _preserve_progress(self, state: Optional[_RunState]) -> None:
        if state is None or state.valid_this_session == 0:
            return
        try:
            self._save(state, is_complete=False)
        except Exception:  # noqa: BLE001
            logger.exception("Best-effort checkpoint save failed")
