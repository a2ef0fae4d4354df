"""HTTP client for the experiment server.

Only the trial execution-order document and the participant checkpoint
endpoints are used. Responses are classified into retryable and
non-retryable errors; retry policy is applied by the callers.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..exceptions import NonRetryableRequestError, RequestFailedError

logger = logging.getLogger(__name__)

# Authorization and not-found responses never succeed on retry
NON_RETRYABLE_STATUS = frozenset({401, 403, 404})


@dataclass
class ServerConfig:
    """Connection settings for the experiment server."""

    base_url: str
    api_key: str | None = None
    timeout: float = 30.0

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers


class ExperimentClient:
    """Async client for trial documents and checkpoints.

    Usage:
        async with ExperimentClient(ServerConfig(base_url="https://host", api_key="...")) as client:
            document = await client.fetch_trial_document("exp-1")
    """

    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Create a client.

        Args:
            config: Server settings.
            transport: Optional transport for the owned httpx client.
            http_client: Pre-built httpx client; not closed by ``aclose``.
        """
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers=config.headers(),
            timeout=config.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ExperimentClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    @staticmethod
    def trial_document_path(experiment_id: str) -> str:
        return f"/api/experiments/{experiment_id}/trials/execution-order"

    @staticmethod
    def checkpoint_path(participant_id: str, experiment_id: str) -> str:
        return f"/api/participants/{participant_id}/experiments/{experiment_id}/checkpoint"

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RequestFailedError(path, message=f"{type(e).__name__}: {e}") from e

        if response.status_code in NON_RETRYABLE_STATUS:
            raise NonRetryableRequestError(path, response.status_code)
        if response.is_error:
            raise RequestFailedError(path, response.status_code)
        return response

    @staticmethod
    def _decode(response: httpx.Response, path: str) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise RequestFailedError(path, response.status_code, "response is not valid JSON") from e

    async def fetch_trial_document(self, experiment_id: str) -> Any:
        """Fetch the trial execution order for an experiment.

        Returns:
            Decoded JSON document (array or wrapper object).

        Raises:
            RequestFailedError: On transport failures and retryable statuses.
            NonRetryableRequestError: On 401, 403 or 404.
        """
        path = self.trial_document_path(experiment_id)
        response = await self._request("GET", path)
        logger.debug(f"Fetched trial document for experiment {experiment_id}")
        return self._decode(response, path)

    async def get_checkpoint(self, participant_id: str, experiment_id: str) -> int | None:
        """Read the remote checkpoint; None when the server has none."""
        path = self.checkpoint_path(participant_id, experiment_id)
        try:
            response = await self._request("GET", path)
        except NonRetryableRequestError as e:
            if e.is_not_found:
                return None
            raise

        data = self._decode(response, path)
        if not isinstance(data, dict):
            raise RequestFailedError(path, response.status_code, "unexpected checkpoint payload")
        index = data.get("currentTrialIndex")
        if index is None:
            return None
        try:
            return int(index)
        except (TypeError, ValueError) as e:
            raise RequestFailedError(path, response.status_code, f"bad index {index!r}") from e

    async def put_checkpoint(self, participant_id: str, experiment_id: str, index: int) -> None:
        """Write the remote checkpoint."""
        path = self.checkpoint_path(participant_id, experiment_id)
        await self._request("POST", path, json={"currentTrialIndex": index})
        logger.debug(f"Remote checkpoint saved at index {index}")
