# app/services/calendar/base_provider.py
"""Capability interface shared by every calendar provider adapter"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

import requests

from app.config.settings import Settings, get_settings
from app.core.exceptions import TransportError, UpstreamAuthError
from app.models.calendar_connection import CalendarProvider
from app.schemas.calendar import CalendarEvent, CalendarInfo

logger = logging.getLogger(__name__)


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None


@dataclass
class OAuthAccountInfo:
    email: str
    name: Optional[str] = None


def expires_at_from(expires_in: Optional[int]) -> Optional[datetime]:
    """Turn a relative ``expires_in`` (seconds) into an absolute UTC timestamp."""
    if not expires_in:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))


def to_utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class CalendarProviderAdapter(ABC):
    """
    One vendor's OAuth endpoints, scopes and calendar REST API.

    Subclasses normalize vendor payloads into CalendarInfo / CalendarEvent.
    Vendor calls are made once; failures surface immediately.
    """
    provider: CalendarProvider

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.timeout = self.settings.CALENDAR_HTTP_TIMEOUT_SECONDS

    @abstractmethod
    def build_authorize_url(self, callback_url: str, state: str) -> str:
        """Vendor consent URL; no network call"""

    @abstractmethod
    def exchange_code(self, code: str, callback_url: str) -> OAuthTokens:
        """Trade an authorization code for tokens"""

    @abstractmethod
    def refresh_token(self, refresh_token: str) -> OAuthTokens:
        """Get a new access token; keeps the old refresh token if the vendor sends none"""

    @abstractmethod
    def fetch_account_info(self, access_token: str) -> OAuthAccountInfo:
        pass

    @abstractmethod
    def list_calendars(self, access_token: str) -> List[CalendarInfo]:
        pass

    @abstractmethod
    def list_events(
            self,
            access_token: str,
            calendar_id: str,
            start_date: datetime,
            end_date: datetime,
            max_results: int
    ) -> List[CalendarEvent]:
        pass

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _get_json(self, url: str, access_token: str, action: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Bearer-authenticated GET against a vendor REST API"""
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            response = requests.get(url, headers=headers, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"{self.provider.value}: failed to {action}: {e}")
            raise TransportError(f"Failed to {action} from {self.provider.value}") from e

        if not response.ok:
            logger.error(f"{self.provider.value}: failed to {action} ({response.status_code}): {response.text}")
            raise TransportError(f"Failed to {action} from {self.provider.value}")

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{self.provider.value}: failed to {action}: response was not JSON")
            raise TransportError(f"Failed to {action} from {self.provider.value}") from e

    def _tokens_from(
            self,
            data: Any,
            action: str,
            previous_refresh_token: Optional[str] = None
    ) -> OAuthTokens:
        """Token endpoint payload -> OAuthTokens; a payload without an access token is a rejection"""
        if not isinstance(data, dict) or not data.get("access_token"):
            error = data.get("error_description") or data.get("error") if isinstance(data, dict) else None
            logger.error(f"{self.provider.value}: {action} returned no access token ({error or 'empty response'})")
            raise UpstreamAuthError(f"{self.provider.value} rejected the request to {action}")

        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or previous_refresh_token,
            expires_at=expires_at_from(data.get("expires_in")),
        )
