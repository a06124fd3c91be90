"""FFLogs v2 GraphQL client that enforces both rate budgets before every call."""

from __future__ import annotations

import asyncio
import math
import time
from typing import Any, Dict, List, Optional

import aiohttp

from shadowtrace import logger
from shadowtrace.__version__ import __version__
from shadowtrace.cancellation import CancellationToken, ensure_token
from shadowtrace.config import ApiCredentials
from shadowtrace.errors import ApiRequestError, QuotaExceededError
from shadowtrace.fflogs import queries
from shadowtrace.fflogs.resilience import expect_dict, optional_dict, optional_list_of_dicts
from shadowtrace.protocols import NullStatusSink, StatusSink
from shadowtrace.rate_limits import POINTS_PER_REQUEST, WAIT_LOG_THRESHOLD_SECONDS, RateWindowTracker
from shadowtrace.types import QuotaState, UsageSnapshot

DEFAULT_USER_AGENT = f"ShadowTrace/{__version__}"
ENDPOINT_LABEL = "FFLOGS"


class FFLogsClient:
    """Quota-aware FFLogs client shared by every stage of a search."""

    def __init__(
        self,
        credentials: ApiCredentials,
        tracker: RateWindowTracker,
        *,
        status: StatusSink | None = None,
        points_per_request: float = POINTS_PER_REQUEST,
    ):
        if not credentials.is_configured():
            raise ValueError("FFLogs client id and secret are required.")

        self.credentials = credentials
        self.tracker = tracker
        self.status: StatusSink = status or NullStatusSink()
        self.points_per_request = float(points_per_request)
        self.quota = QuotaState()
        self.is_waiting = False
        self._access_token: str | None = None
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()
        self._update_task: asyncio.Task | None = None

    async def query(
        self,
        graphql: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        request_count: int = 1,
        cancel_token: CancellationToken | None = None,
    ) -> Dict[str, Any]:
        """
        Run one GraphQL query.

        ``request_count`` is the number of logical requests aliased into the
        query and drives the point-budget check. The short-term window is
        charged one unit per network call regardless.
        """
        token = ensure_token(cancel_token)
        token.raise_if_cancelled()
        self._check_point_budget(request_count)
        await self._wait_for_request_slot(token)

        access_token = await self._get_access_token()
        token.raise_if_cancelled()

        payload = {"query": graphql, "variables": variables or {}}
        url = self.credentials.api_url
        logger.get_logger().api_request("POST", url, payload)
        request_start = time.time()
        session = await self._ensure_session()
        try:
            async with session.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {access_token}"},
            ) as response:
                if response.status >= 400:
                    text = await response.text()
                    if response.status == 401:
                        self._access_token = None
                    raise ApiRequestError(
                        f"API request failed ({response.status}): {text[:200]}",
                        status=response.status,
                    )
                self.tracker.record(1)
                body = await response.json()
                status = response.status
        except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
            raise ApiRequestError(f"API request failed: {exc}") from exc

        elapsed_ms = (time.time() - request_start) * 1000
        logger.get_logger().api_response(status, body, elapsed_ms)
        token.raise_if_cancelled()

        root = expect_dict(body, "FFLogs response")
        errors = root.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else errors
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise ApiRequestError(message or "Unknown GraphQL error")

        data = optional_dict(root, "data", "FFLogs response")
        rate_limit = data.get("rateLimitData")
        if isinstance(rate_limit, dict):
            self.update_rate_limit_info(rate_limit)
        return data

    def _check_point_budget(self, request_count: int) -> None:
        estimated = request_count * self.points_per_request
        available = self.quota.available_points()
        if available is not None and available < estimated:
            raise QuotaExceededError(estimated, available, self.quota.reset_minutes())

    async def _wait_for_request_slot(self, token: CancellationToken) -> None:
        if self.tracker.available_slots() >= 1:
            return

        wait = self.tracker.wait_time_for(1)
        log = logger.get_logger()
        log.api_wait_debug(ENDPOINT_LABEL, wait)
        if wait > WAIT_LOG_THRESHOLD_SECONDS:
            log.api_wait(ENDPOINT_LABEL, wait)

        was_updating = self._update_task is not None
        self.is_waiting = True
        self.stop_periodic_update()
        try:
            remaining = math.ceil(wait)
            while remaining > 0:
                token.raise_if_cancelled()
                self.status.show_waiting(remaining)
                await asyncio.sleep(1)
                remaining -= 1
        finally:
            self.is_waiting = False
            if was_updating:
                self.start_periodic_update()
            self.status.show_usage(self.usage_snapshot())
        token.raise_if_cancelled()

    async def _get_access_token(self) -> str:
        if self._access_token:
            return self._access_token

        session = await self._ensure_session()
        try:
            async with session.post(
                self.credentials.token_url,
                data={"grant_type": "client_credentials"},
                auth=aiohttp.BasicAuth(self.credentials.client_id, self.credentials.client_secret),
            ) as response:
                if response.status != 200:
                    raise ApiRequestError(
                        "API authentication failed. Check the client id and secret.",
                        status=response.status,
                    )
                body = await response.json()
        except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
            raise ApiRequestError(f"API authentication failed: {exc}") from exc

        access_token = expect_dict(body, "OAuth token response").get("access_token")
        if not access_token:
            raise ApiRequestError("OAuth token response did not include an access token")
        self._access_token = str(access_token)
        return self._access_token

    async def _ensure_session(self) -> aiohttp.ClientSession:
        session = self._session
        if session is not None and not session.closed:
            return session

        async with self._session_lock:
            session = self._session
            if session is None or session.closed:
                timeout = aiohttp.ClientTimeout(total=self.credentials.timeout_seconds)
                self._session = aiohttp.ClientSession(
                    headers={"User-Agent": DEFAULT_USER_AGENT},
                    timeout=timeout,
                )
            return self._session

    # Usage state

    def update_rate_limit_info(self, rate_limit: Dict[str, Any]) -> None:
        self.quota.update(rate_limit)
        # A running countdown owns the display.
        if not self.is_waiting:
            self.status.show_usage(self.usage_snapshot())

    def available_points(self) -> float | None:
        return self.quota.available_points()

    def usage_snapshot(self) -> UsageSnapshot:
        recent = self.tracker.recent_usage()
        return UsageSnapshot(
            recent_requests=recent,
            max_requests=self.tracker.max_requests,
            available_slots=max(0, self.tracker.max_requests - recent),
            limit_per_hour=self.quota.limit_per_hour,
            points_spent=self.quota.points_spent,
            available_points=self.quota.available_points(),
            reset_in_seconds=self.quota.reset_in_seconds,
            waiting=self.is_waiting,
        )

    def reset_usage_tracking(self) -> None:
        """Forget the hourly budget; the short-term window history is kept."""
        self.quota.clear()

    def start_periodic_update(self, interval_seconds: float = 1.0) -> None:
        if self._update_task is not None and not self._update_task.done():
            return
        self._update_task = asyncio.get_running_loop().create_task(self._periodic_update(interval_seconds))

    def stop_periodic_update(self) -> None:
        task = self._update_task
        self._update_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _periodic_update(self, interval_seconds: float) -> None:
        while True:
            if not self.is_waiting:
                self.status.show_usage(self.usage_snapshot())
            await asyncio.sleep(interval_seconds)

    # Report and world data

    async def get_anonymous_report(
        self, code: str, cancel_token: CancellationToken | None = None
    ) -> Dict[str, Any]:
        data = await self.query(queries.ANONYMOUS_REPORT_QUERY, {"code": code}, cancel_token=cancel_token)
        report = optional_dict(optional_dict(data, "reportData", "data"), "report", "data.reportData")
        if not report:
            raise ApiRequestError(f"Report {code} was not found")
        return report

    async def get_encounter_partitions(
        self, encounter_id: int, cancel_token: CancellationToken | None = None
    ) -> List[Dict[str, Any]]:
        data = await self.query(queries.encounter_partitions_query(encounter_id), cancel_token=cancel_token)
        encounter = optional_dict(optional_dict(data, "worldData", "data"), "encounter", "data.worldData")
        zone = optional_dict(encounter, "zone", "encounter")
        return optional_list_of_dicts(zone, "partitions", "encounter.zone")

    async def get_report_players(
        self, code: str, fight_id: int, cancel_token: CancellationToken | None = None
    ) -> List[Dict[str, Any]]:
        """Player actors that took part in one fight of a report."""
        data = await self.query(
            queries.report_players_query(fight_id), {"code": code}, cancel_token=cancel_token
        )
        report = optional_dict(optional_dict(data, "reportData", "data"), "report", "data.reportData")
        fights = optional_list_of_dicts(report, "fights", "report")
        friendly_ids = set(fights[0].get("friendlyPlayers") or []) if fights else set()
        actors = optional_list_of_dicts(optional_dict(report, "masterData", "report"), "actors", "report.masterData")
        return [actor for actor in actors if actor.get("id") in friendly_ids]

    async def get_report_damage(
        self, code: str, fight_id: int, cancel_token: CancellationToken | None = None
    ) -> List[Dict[str, Any]]:
        """Per-player damage totals (name, amount) from the DamageDone table of one fight."""
        data = await self.query(
            queries.report_damage_query(fight_id), {"code": code}, cancel_token=cancel_token
        )
        report = optional_dict(optional_dict(data, "reportData", "data"), "report", "data.reportData")
        table = report.get("table")
        if not isinstance(table, dict):
            return []
        entries = optional_list_of_dicts(optional_dict(table, "data", "table"), "entries", "table.data")
        return [{"name": entry.get("name"), "amount": entry.get("total") or 0} for entry in entries]

    async def refresh_usage(self, cancel_token: CancellationToken | None = None) -> QuotaState:
        """Fetch only the quota fields; failures are logged and leave the state unchanged."""
        try:
            await self.query(queries.USAGE_QUERY, cancel_token=cancel_token)
        except (ApiRequestError, QuotaExceededError) as exc:
            logger.warning(f"Could not refresh API usage: {exc}")
        return self.quota

    async def close(self) -> None:
        """Close any open connections."""
        self.stop_periodic_update()
        async with self._session_lock:
            session = self._session
            self._session = None
        if session is not None and not session.closed:
            await session.close()
