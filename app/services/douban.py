"""Utilities for communicating with the Douban interests API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from ..config import Settings
from ..errors import UpstreamError
from ..models import ImageRef, SubjectDetail, SubjectType
from ..utils import coerce_rating, dig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InterestPage:
    """One page of a user's collection and the reported total size.

    ``received`` counts every entry the upstream returned, including malformed
    ones left out of ``records``; pagination decisions use it.
    """

    uid: str
    kind: str
    status: str
    start: int
    records: list[dict[str, Any]]
    received: int = 0
    total: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DoubanClient:
    """Thin wrapper around the Douban-compatible HTTP API.

    Every call is a single request. Failures are raised as
    :class:`UpstreamError`; retry policy, if any, belongs to the caller.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Referer": self._settings.douban_referer,
            "User-Agent": self._settings.upstream_user_agent,
        }

    async def _get_json(
        self, path: str, *, params: dict[str, Any], description: str
    ) -> Any:
        try:
            response = await self._client.get(
                path, headers=self._headers(), params=params
            )
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch %s: %s", description, exc)
            raise UpstreamError(
                f"Request for {description} failed: {exc.__class__.__name__}"
            ) from exc

        if response.status_code >= 400:
            logger.warning(
                "Failed to fetch %s: HTTP %s %s",
                description,
                response.status_code,
                response.text[:200],
            )
            raise UpstreamError(
                f"Request for {description} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Unexpected non-JSON response for %s", description)
            raise UpstreamError(f"Invalid JSON returned for {description}") from exc

    async def fetch_interests(
        self,
        uid: str,
        kind: str,
        status: str,
        *,
        start: int = 0,
        count: int = 50,
    ) -> InterestPage:
        """Fetch one page of a user's collection for a kind and status."""

        description = f"{kind}/{status} interests of {uid} (start {start})"
        data = await self._get_json(
            f"/user/{uid}/interests",
            params={"type": kind, "status": status, "count": count, "start": start},
            description=description,
        )
        if not isinstance(data, dict):
            logger.warning("Unexpected response structure for %s", description)
            raise UpstreamError(f"Unexpected response structure for {description}")

        raw_records = data.get("interests") or []
        if not isinstance(raw_records, list):
            raise UpstreamError(f"Unexpected interests payload for {description}")
        records: list[dict[str, Any]] = []
        for index, entry in enumerate(raw_records):
            if isinstance(entry, dict):
                records.append(entry)
            else:
                logger.warning(
                    "Skipping malformed entry %s in %s: %r",
                    start + index,
                    description,
                    entry,
                )

        return InterestPage(
            uid=uid,
            kind=kind,
            status=status,
            start=start,
            records=records,
            received=len(raw_records),
            total=self._extract_total(data),
            payload=data,
        )

    async def fetch_subject(self, subject_type: SubjectType, subject_id: str) -> SubjectDetail:
        """Return the name, cover and rating of a single subject."""

        description = f"{subject_type} {subject_id} detail"
        data = await self._get_json(
            f"/{subject_type}/{subject_id}",
            params={"ck": "xgtY", "for_mobile": 1},
            description=description,
        )
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected response structure for {description}")

        return SubjectDetail(
            subject_type=subject_type,
            subject_id=str(subject_id),
            name=str(data.get("title") or ""),
            rating=coerce_rating(dig(data, "rating", "value")),
            image=ImageRef(source=str(dig(data, "pic", "normal") or "").strip()),
        )

    @staticmethod
    def _extract_total(data: dict[str, Any]) -> int | None:
        value = data.get("total")
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
