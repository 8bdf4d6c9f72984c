"""
Read-only client for the Canvas REST API.

The rest of the app only needs one capability from this module:

    CanvasClient.fetch(category, course_ids) -> list of records

Everything else (auth header, pagination, error mapping) stays in here.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterator, Optional, Sequence
from urllib.parse import urljoin

import requests
from loguru import logger

from canvasterm import __version__
from canvasterm.model import RECORD_TYPES, Category, UserProfile, utcnow

# The calendar endpoint accepts at most 10 context codes per request.
CONTEXT_CHUNK = 10
CALENDAR_WINDOW_DAYS = 30


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class CanvasError(Exception):
    """Base class for every failure while talking to the LMS."""


class Unauthorized(CanvasError):
    def __init__(self) -> None:
        super().__init__("Unauthorized - check your API token")


class RateLimited(CanvasError):
    def __init__(self, retry_after: float) -> None:
        super().__init__(f"Rate limited - retry after {retry_after:.1f}s")
        self.retry_after = retry_after


class ApiError(CanvasError):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class NetworkError(CanvasError):
    pass


class DecodeError(CanvasError):
    pass


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class CanvasClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
        per_page: int = 50,
    ) -> None:
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid Canvas URL: {base_url!r}")
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.per_page = per_page
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "User-Agent": f"canvasterm/{__version__}",
                "Accept": "application/json",
            }
        )

    def _api_url(self, path: str) -> str:
        return urljoin(self.base_url, "api/v1/" + path.lstrip("/"))

    def _get(self, url: str, params: Optional[list[tuple[str, str]]] = None) -> requests.Response:
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise NetworkError(f"Network error: {exc}") from exc

        status = resp.status_code
        if status == 401:
            raise Unauthorized()
        if status == 403:
            raise ApiError(403, "Forbidden - insufficient permissions")
        if status == 429:
            try:
                retry = float(resp.headers.get("Retry-After", "1"))
            except ValueError:
                retry = 1.0
            raise RateLimited(retry)
        if status >= 400:
            raise ApiError(status, resp.text.strip()[:200])
        return resp

    def _decode_list(self, resp: requests.Response) -> list[Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise DecodeError(f"Invalid JSON from {resp.url}: {exc}") from exc
        if not isinstance(data, list):
            raise DecodeError(f"Expected a JSON list from {resp.url}")
        return data

    def _get_all_pages(self, path: str, params: list[tuple[str, str]]) -> list[Any]:
        """
        GET a list endpoint and follow Link: rel="next" until the last page.
        """
        items: list[Any] = []
        resp = self._get(self._api_url(path), params=params + [("per_page", str(self.per_page))])
        items.extend(self._decode_list(resp))

        next_url = resp.links.get("next", {}).get("url")
        while next_url:
            resp = self._get(next_url)
            items.extend(self._decode_list(resp))
            next_url = resp.links.get("next", {}).get("url")
        return items

    # -- raw endpoints ------------------------------------------------------

    def get_self(self) -> dict[str, Any]:
        resp = self._get(self._api_url("users/self"))
        try:
            data = resp.json()
        except ValueError as exc:
            raise DecodeError(f"Invalid JSON from {resp.url}: {exc}") from exc
        if not isinstance(data, dict):
            raise DecodeError(f"Expected a JSON object from {resp.url}")
        return data

    def list_courses(self) -> list[dict[str, Any]]:
        return self._get_all_pages(
            "courses",
            [
                ("enrollment_state", "active"),
                ("include[]", "term"),
                ("include[]", "enrollments"),
                ("include[]", "total_students"),
            ],
        )

    def list_assignments(self, course_id: int) -> list[dict[str, Any]]:
        return self._get_all_pages(
            f"courses/{course_id}/assignments",
            [("include[]", "submission"), ("order_by", "due_at")],
        )

    def list_calendar_events(
        self, course_ids: Sequence[int], start: datetime, end: datetime, event_type: str = "event"
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for chunk in _chunks(list(course_ids), CONTEXT_CHUNK):
            params = [
                ("type", event_type),
                ("start_date", start.strftime("%Y-%m-%d")),
                ("end_date", end.strftime("%Y-%m-%d")),
            ]
            params += [("context_codes[]", f"course_{cid}") for cid in chunk]
            out.extend(self._get_all_pages("calendar_events", params))
        return out

    def list_announcements(self, course_ids: Sequence[int]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for chunk in _chunks(list(course_ids), CONTEXT_CHUNK):
            params = [("latest_only", "false")]
            params += [("context_codes[]", f"course_{cid}") for cid in chunk]
            out.extend(self._get_all_pages("announcements", params))
        return out

    def fetch_profile(self) -> UserProfile:
        """The signed-in user, for the dashboard greeting."""
        try:
            return UserProfile.from_api(self.get_self())
        except ValueError as exc:
            raise DecodeError(f"Unreadable user profile: {exc}") from exc

    # -- the capability the sync coordinator consumes -----------------------

    def fetch(self, category: Category, course_ids: Sequence[int] = ()) -> list[Any]:
        """
        Fetch every record of one category.

        Raises a CanvasError subclass on failure; the caller decides what
        that means for the cache.
        """
        now = utcnow()
        if category == Category.COURSES:
            payloads = self.list_courses()
        elif category == Category.ASSIGNMENTS:
            payloads = []
            for cid in course_ids:
                try:
                    payloads.extend(self.list_assignments(cid))
                except ApiError as exc:
                    # Concluded or restricted courses answer 403/404; skip them.
                    if exc.status not in (403, 404):
                        raise
                    logger.info("Skipping assignments of course {}: {}", cid, exc)
        elif category == Category.CALENDAR_EVENTS:
            start = now
            end = now + timedelta(days=CALENDAR_WINDOW_DAYS)
            payloads = self.list_calendar_events(course_ids, start, end, "event")
            payloads += self.list_calendar_events(course_ids, start, end, "assignment")
        elif category == Category.ANNOUNCEMENTS:
            payloads = self.list_announcements(course_ids)
        else:
            raise ValueError(f"Unknown category: {category!r}")
        return decode_records(category, payloads, now)


def decode_records(category: Category, payloads: Sequence[Any], now: Optional[datetime] = None) -> list[Any]:
    """
    Turn raw JSON objects into records, skipping the ones that do not decode.
    """
    record_type = RECORD_TYPES[category]
    now = now or utcnow()
    records = []
    for payload in payloads:
        if not isinstance(payload, dict):
            logger.warning("Skipping non-object {} payload: {!r}", category.value, payload)
            continue
        try:
            records.append(record_type.from_api(payload, now))
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            logger.warning("Skipping undecodable {} record: {}", category.value, exc)
    return records
