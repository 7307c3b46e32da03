from __future__ import annotations

"""Inference service adapter.

The service sleeps after inactivity, so `wake_up()` pings `/health` early in
a run and the real `predict()` call finds it awake. The ping never raises: a
failed wake-up only means the prediction takes longer.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
from pydantic import ValidationError

from ingestion.core.errors import ConfigurationError, InferenceError
from ingestion.core.network_client import BackoffFetcher
from ingestion.core.opening_stats import convert_to_inference_payload
from recommender.schemas.stats import InferencePredictResponse, PlayerData

logger = logging.getLogger("openingrec.ingestion.inference")

HEALTH_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class WakeUpResult:
    success: bool
    message: str


class InferenceClient:
    def __init__(
        self,
        fetcher: BackoffFetcher,
        *,
        base_url: Optional[str],
        api_token: Optional[str],
    ) -> None:
        self._fetcher = fetcher
        self._base_url = base_url.rstrip("/") if base_url else None
        self._api_token = api_token

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def wake_up(self) -> WakeUpResult:
        try:
            if not self._base_url:
                raise ConfigurationError("Inference service URL not configured")
            logger.info(f"[Inference] Waking up {self._base_url}")
            response = await self._fetcher.send(
                "GET",
                f"{self._base_url}/health",
                headers=self._headers(),
                timeout_seconds=HEALTH_TIMEOUT_SECONDS,
            )
            if not response.is_success:
                raise InferenceError(f"Health check failed: {response.status_code} {response.reason_phrase}")
        except (ConfigurationError, InferenceError, httpx.HTTPError) as e:
            logger.warning(f"[Inference] Failed to wake up service: {e}")
            return WakeUpResult(success=False, message=f"Failed to wake inference service: {e}")

        logger.info("[Inference] Service is awake and healthy")
        return WakeUpResult(success=True, message="Inference service is awake and ready")

    async def predict(self, player_data: PlayerData) -> InferencePredictResponse:
        if not self._base_url:
            raise ConfigurationError("Inference service URL not configured")
        if not self._api_token:
            raise ConfigurationError("Inference service API token not configured")

        payload = convert_to_inference_payload(player_data)
        try:
            response = await self._fetcher.send(
                "POST",
                f"{self._base_url}/predict",
                headers=self._headers(),
                json=payload.model_dump(mode="json"),
            )
        except httpx.RequestError as e:
            raise InferenceError(f"Could not reach the inference service: {e}") from e

        if not response.is_success:
            raise InferenceError(f"Inference service error: {response.status_code} {response.reason_phrase}")

        try:
            result = InferencePredictResponse.model_validate_json(response.content)
        except ValidationError as e:
            logger.warning(f"[Inference] Malformed response: {e}")
            raise InferenceError("Invalid response from inference service") from e

        logger.info(
            f"[Inference] request_id={result.request_id} model={result.model_version} "
            f"recommendations={len(result.recommendations)}"
        )
        return result
