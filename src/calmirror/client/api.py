"""Async HTTP client for the remote calendar service.

This module provides:
- CalendarClient: Async client for the calendar REST API
- Calendar list, event listing (full window or sync token) and event CRUD
- Invitation responses
- APIError hierarchy mapping HTTP status codes to failure kinds
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

if TYPE_CHECKING:
    from calmirror.client.auth import TokenProvider
    from calmirror.core.config import ClientConfig

logger = logging.getLogger(__name__)

# Status codes the remote service uses for transient failures
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

MAX_PAGE_SIZE = 250


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Access token rejected even after a refresh."""


class PermissionDeniedError(APIError):
    """The account may not access the resource."""


class BadRequestError(APIError):
    """The request was rejected as malformed."""


class NotFoundError(APIError):
    """Resource not found (or already deleted)."""


class RateLimitError(APIError):
    """Too many requests."""


class ServerError(APIError):
    """The remote service failed."""


class SyncTokenExpiredError(APIError):
    """The sync token is no longer valid; a full sync is required."""


class NetworkError(APIError):
    """The request never produced a response (connection error, timeout)."""


class TokenRefreshError(APIError):
    """Refreshing the access token failed."""


@dataclass
class RemoteCalendar:
    """Calendar list entry from the remote service."""

    id: str
    summary: str
    description: str | None = None
    color: str | None = None
    primary: bool = False
    access_role: str = "reader"
    selected: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteCalendar:
        """Create from API response dictionary."""
        return cls(
            id=data["id"],
            summary=data.get("summaryOverride") or data.get("summary") or data["id"],
            description=data.get("description"),
            color=data.get("backgroundColor"),
            primary=bool(data.get("primary", False)),
            access_role=data.get("accessRole") or "reader",
            selected=bool(data.get("selected", True)),
        )


@dataclass
class EventsPage:
    """One page of an event listing."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_page_token: str | None = None
    next_sync_token: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventsPage:
        """Create from API response dictionary."""
        return cls(
            items=list(data.get("items") or []),
            next_page_token=data.get("nextPageToken"),
            next_sync_token=data.get("nextSyncToken"),
        )


def _error_message(response: httpx.Response) -> str:
    """Extract the message of a ``{"error": {...}}`` body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("status") or response.reason_phrase)
    if isinstance(error, str):
        return body.get("error_description") or error
    return response.reason_phrase


class CalendarClient:
    """Async HTTP client for the calendar REST API."""

    def __init__(
        self,
        config: ClientConfig,
        token_provider: TokenProvider,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the calendar client.

        Args:
            config: Client configuration (base URL, timeout).
            token_provider: Source of bearer tokens per account.
            http_client: Optional shared HTTP client (closed by the caller).
        """
        self._base_url = config.api_base_url
        self._tokens = token_provider
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout)

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> CalendarClient:
        """Context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Context manager exit."""
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    @staticmethod
    def _events_path(calendar_id: str, event_id: str | None = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            path += f"/{quote(event_id, safe='')}"
        return path

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                self._url(path),
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request timed out: {method} {path}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection failed: {e}") from e

    async def _request(
        self,
        account_id: str,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        sync_token_request: bool = False,
    ) -> httpx.Response:
        """Send an authenticated request.

        A 401 forces one token refresh and one retry; a second 401 raises.
        """
        token = await self._tokens.get_access_token(account_id)
        response = await self._send(method, path, token, params, json)
        if response.status_code == 401:
            logger.info(f"Access token rejected for account {account_id}, refreshing")
            token = await self._tokens.get_access_token(account_id, force_refresh=True)
            response = await self._send(method, path, token, params, json)
        return self._handle_response(response, sync_token_request)

    def _handle_response(
        self,
        response: httpx.Response,
        sync_token_request: bool = False,
    ) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status < 400:
            return response

        message = _error_message(response)
        if status == 401:
            raise AuthenticationError(message or "Invalid or expired token", status)
        if status == 403:
            raise PermissionDeniedError(message, status)
        if status == 400:
            raise BadRequestError(message, status)
        if status == 404:
            raise NotFoundError(message, status)
        if status == 410:
            if sync_token_request:
                raise SyncTokenExpiredError(message, status)
            raise NotFoundError(message, status)
        if status == 429:
            raise RateLimitError(message, status)
        if status >= 500:
            raise ServerError(message, status)
        raise APIError(message, status)

    # === Health check ===

    async def health_check(self) -> bool:
        """Check whether the remote service is reachable.

        Returns:
            True if any HTTP response came back.
        """
        try:
            await self._client.get(self._url("/"))
        except httpx.RequestError:
            return False
        return True

    # === Calendars ===

    async def list_calendars(self, account_id: str) -> list[RemoteCalendar]:
        """List every calendar of an account, following pagination.

        Args:
            account_id: Account whose calendar list is read.

        Returns:
            List of calendars.
        """
        calendars: list[RemoteCalendar] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"maxResults": MAX_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = await self._request(
                account_id, "GET", "/users/me/calendarList", params=params
            )
            data = response.json()
            calendars.extend(RemoteCalendar.from_dict(c) for c in data.get("items") or [])
            page_token = data.get("nextPageToken")
            if not page_token:
                return calendars

    # === Events ===

    async def list_events(
        self,
        account_id: str,
        calendar_id: str,
        time_min: str | None = None,
        time_max: str | None = None,
        sync_token: str | None = None,
        page_token: str | None = None,
    ) -> EventsPage:
        """Fetch one page of events.

        With a sync token only changes since that token are returned
        (including cancelled events) and the window bounds are not sent.

        Args:
            account_id: Owning account.
            calendar_id: Calendar to list.
            time_min: Lower window bound (RFC 3339), full listings only.
            time_max: Upper window bound (RFC 3339), full listings only.
            sync_token: Cursor of the last successful listing.
            page_token: Cursor of the next page.

        Returns:
            The page of raw event resources.

        Raises:
            SyncTokenExpiredError: If the sync token is no longer accepted.
        """
        params: dict[str, Any] = {"singleEvents": "true", "maxResults": MAX_PAGE_SIZE}
        if sync_token:
            params["syncToken"] = sync_token
        else:
            if time_min:
                params["timeMin"] = time_min
            if time_max:
                params["timeMax"] = time_max
            params["orderBy"] = "startTime"
        if page_token:
            params["pageToken"] = page_token

        response = await self._request(
            account_id,
            "GET",
            self._events_path(calendar_id),
            params=params,
            sync_token_request=sync_token is not None,
        )
        return EventsPage.from_dict(response.json())

    async def get_event(self, account_id: str, calendar_id: str, event_id: str) -> dict[str, Any]:
        """Get a single event resource.

        Raises:
            NotFoundError: If the event does not exist.
        """
        response = await self._request(
            account_id, "GET", self._events_path(calendar_id, event_id)
        )
        data: dict[str, Any] = response.json()
        return data

    async def create_event(
        self,
        account_id: str,
        calendar_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Create an event.

        Returns:
            The created resource, carrying the canonical id.
        """
        response = await self._request(
            account_id, "POST", self._events_path(calendar_id), json=payload
        )
        data: dict[str, Any] = response.json()
        logger.debug(f"Created event {data.get('id')} in {calendar_id}")
        return data

    async def update_event(
        self,
        account_id: str,
        calendar_id: str,
        event_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Replace an event with the given representation."""
        response = await self._request(
            account_id, "PUT", self._events_path(calendar_id, event_id), json=payload
        )
        data: dict[str, Any] = response.json()
        return data

    async def delete_event(self, account_id: str, calendar_id: str, event_id: str) -> None:
        """Delete an event.

        Raises:
            NotFoundError: If the event is already gone (404 or 410).
        """
        await self._request(account_id, "DELETE", self._events_path(calendar_id, event_id))

    async def respond_to_invitation(
        self,
        account_id: str,
        calendar_id: str,
        event_id: str,
        email: str,
        response_status: str,
    ) -> dict[str, Any]:
        """Set the response of one attendee of an event.

        Args:
            account_id: Owning account.
            calendar_id: Calendar holding the event.
            event_id: Event id.
            email: Attendee whose response changes.
            response_status: accepted, declined, tentative or needsAction.

        Returns:
            The patched event resource.

        Raises:
            NotFoundError: If the attendee is not invited to the event.
        """
        event = await self.get_event(account_id, calendar_id, event_id)
        attendees = list(event.get("attendees") or [])
        for attendee in attendees:
            if (attendee.get("email") or "").lower() == email.lower():
                attendee["responseStatus"] = response_status
                break
        else:
            raise NotFoundError(f"{email} is not an attendee of {event_id}", 404)

        response = await self._request(
            account_id,
            "PATCH",
            self._events_path(calendar_id, event_id),
            json={"attendees": attendees},
        )
        data: dict[str, Any] = response.json()
        return data
