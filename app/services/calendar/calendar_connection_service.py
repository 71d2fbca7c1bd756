# ============================================================================
# FILE: app/services/calendar/calendar_connection_service.py
# Connect -> callback -> (refresh) -> query lifecycle for calendar accounts
# ============================================================================
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union
from uuid import UUID
import logging
import threading
import weakref

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config.settings import Settings, get_settings
from app.core.exceptions import CalendarError, NotFoundError, ValidationError
from app.models.calendar_connection import CalendarConnection, CalendarProvider
from app.schemas.calendar import CalendarConnectionOut, CalendarEvent, CalendarInfo, OAuthUrlResponse
from app.services.calendar.base_provider import CalendarProviderAdapter, OAuthAccountInfo, OAuthTokens
from app.services.calendar.google_calendar_service import GoogleCalendarService
from app.services.calendar.mock_calendar_service import MockCalendarService
from app.services.calendar.oauth_state import decode_state, encode_state, infer_platform, verify_state
from app.services.calendar.outlook_service import OutlookCalendarService

logger = logging.getLogger(__name__)

PRIMARY_CALENDAR = "primary"
RECONNECT_MESSAGE = "Calendar connection expired. Please reconnect your calendar."


class RefreshLockRegistry:
    """One lock per connection id so a token is refreshed by one request at a time.

    Entries live only while some request holds the lock object.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, connection_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(connection_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[connection_id] = lock
            return lock

    def active_count(self) -> int:
        return len(self._locks)


refresh_locks = RefreshLockRegistry()


def build_providers(settings: Settings) -> Dict[CalendarProvider, CalendarProviderAdapter]:
    """Adapter set keyed by provider; mocks replace every vendor when enabled."""
    if settings.USE_CALENDAR_MOCKS:
        logger.info("Calendar mocks enabled - using mock providers")
        return {provider: MockCalendarService(provider, settings) for provider in CalendarProvider}

    return {
        CalendarProvider.GOOGLE: GoogleCalendarService(settings),
        CalendarProvider.MICROSOFT: OutlookCalendarService(settings),
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(value: Union[str, UUID]) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class CalendarConnectionService:
    """Service layer for calendar account connections (one instance per request)."""

    def __init__(
            self,
            db: Session,
            settings: Optional[Settings] = None,
            providers: Optional[Dict[CalendarProvider, CalendarProviderAdapter]] = None,
            locks: Optional[RefreshLockRegistry] = None
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.providers = providers if providers is not None else build_providers(self.settings)
        self.locks = locks or refresh_locks

    def get_provider(self, provider: Union[str, CalendarProvider]) -> CalendarProviderAdapter:
        try:
            key = CalendarProvider(provider)
        except ValueError:
            raise ValidationError(f"Unsupported calendar provider: {provider}")

        adapter = self.providers.get(key)
        if adapter is None:
            raise ValidationError(f"Unsupported calendar provider: {key.value}")
        return adapter

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def list_connections(self, user_id: str) -> List[CalendarConnectionOut]:
        connections = self.db.query(CalendarConnection).filter(
            CalendarConnection.user_id == user_id
        ).order_by(CalendarConnection.created_at).all()
        return [CalendarConnectionOut.model_validate(c) for c in connections]

    def get_oauth_url(
            self,
            user_id: str,
            provider: Union[str, CalendarProvider],
            client_redirect_scheme: Optional[str] = None
    ) -> OAuthUrlResponse:
        """
        Build the vendor consent URL for a user.

        Args:
            user_id: Authenticated user starting the flow
            provider: Calendar provider name
            client_redirect_scheme: Client redirect (e.g. k7notes://calendar/callback),
                used only to tell mobile from web

        Returns:
            The consent URL and the state value bound to this user
        """
        adapter = self.get_provider(provider)
        platform = infer_platform(client_redirect_scheme)
        state = encode_state(adapter.provider.value, platform, user_id, secret=self.settings.SECRET_KEY)

        url = adapter.build_authorize_url(self.settings.calendar_callback_url, state)
        logger.info(f"Generated {adapter.provider.value} authorization URL for user {user_id} ({platform.value})")
        return OAuthUrlResponse(url=url, state=state)

    def handle_oauth_callback(
            self,
            user_id: str,
            provider: Union[str, CalendarProvider],
            code: str,
            state: Optional[str] = None
    ) -> CalendarConnectionOut:
        """
        Finish the authorization code grant and store the connection.

        The state is checked before any vendor call. Reconnecting an account that
        is already linked updates and reactivates the existing row.
        """
        adapter = self.get_provider(provider)
        self._validate_state(user_id, adapter.provider, state)

        callback_url = self.settings.calendar_callback_url
        tokens = adapter.exchange_code(code, callback_url)
        account = adapter.fetch_account_info(tokens.access_token)

        connection = self._upsert_connection(user_id, adapter.provider, account, tokens)
        logger.info(f"Stored {adapter.provider.value} calendar connection {connection.id} for user {user_id}")
        return CalendarConnectionOut.model_validate(connection)

    def _validate_state(self, user_id: str, provider: CalendarProvider, state: Optional[str]) -> None:
        if not state:
            if self.settings.CALENDAR_REQUIRE_OAUTH_STATE:
                raise ValidationError("Invalid OAuth state: missing")
            # Nothing to compare against; kept permissive unless configured otherwise
            logger.warning(f"OAuth callback for user {user_id} arrived without a state value")
            return

        parsed = decode_state(state)
        if parsed.user_id != str(user_id):
            logger.warning(f"OAuth state userId mismatch: expected {user_id}, got {parsed.user_id}")
            raise ValidationError("Invalid OAuth state: user mismatch")
        if parsed.provider != provider.value:
            logger.warning(f"OAuth state provider mismatch: expected {provider.value}, got {parsed.provider}")
            raise ValidationError("Invalid OAuth state: provider mismatch")
        if not verify_state(state, secret=self.settings.SECRET_KEY):
            logger.warning(f"OAuth state signature check failed for user {user_id}")
            raise ValidationError("Invalid OAuth state: bad signature")

    def _find_by_natural_key(self, user_id: str, provider: CalendarProvider, email: str) -> Optional[CalendarConnection]:
        return self.db.query(CalendarConnection).filter(
            CalendarConnection.user_id == user_id,
            CalendarConnection.provider == provider.value,
            CalendarConnection.account_email == email
        ).first()

    def _upsert_connection(
            self,
            user_id: str,
            provider: CalendarProvider,
            account: OAuthAccountInfo,
            tokens: OAuthTokens
    ) -> CalendarConnection:
        existing = self._find_by_natural_key(user_id, provider, account.email)
        if existing is None:
            connection = CalendarConnection(
                user_id=user_id,
                provider=provider.value,
                account_email=account.email,
                account_name=account.name,
                token_expires_at=tokens.expires_at,
                is_active=True,
            )
            connection.access_token = tokens.access_token
            connection.refresh_token = tokens.refresh_token
            self.db.add(connection)
            try:
                self.db.commit()
            except IntegrityError:
                # A concurrent callback inserted the same account first
                self.db.rollback()
                existing = self._find_by_natural_key(user_id, provider, account.email)
                if existing is None:
                    raise
            else:
                self.db.refresh(connection)
                return connection

        previous_refresh_token = existing.refresh_token
        existing.access_token = tokens.access_token
        existing.refresh_token = tokens.refresh_token or previous_refresh_token
        existing.token_expires_at = tokens.expires_at
        existing.account_name = account.name
        existing.is_active = True
        existing.updated_at = _utcnow()
        self.db.commit()
        self.db.refresh(existing)
        return existing

    def disconnect(self, user_id: str, connection_id: Union[str, UUID]) -> None:
        connection_uuid = _as_uuid(connection_id)
        connection = None
        if connection_uuid is not None:
            connection = self.db.query(CalendarConnection).filter(
                CalendarConnection.id == connection_uuid,
                CalendarConnection.user_id == user_id
            ).first()

        if not connection:
            raise NotFoundError("Calendar connection not found")

        self.db.delete(connection)
        self.db.commit()
        logger.info(f"Deleted calendar connection {connection_uuid} for user {user_id}")

    # ------------------------------------------------------------------
    # Vendor reads
    # ------------------------------------------------------------------

    def list_calendars(self, user_id: str, connection_id: Union[str, UUID]) -> List[CalendarInfo]:
        connection = self._get_active_connection(user_id, connection_id)
        adapter = self.get_provider(connection.provider)
        access_token = self._get_valid_access_token(connection, adapter)
        return adapter.list_calendars(access_token)

    def list_events(
            self,
            user_id: str,
            connection_id: Union[str, UUID],
            calendar_id: Optional[str],
            start_date: datetime,
            end_date: datetime,
            max_results: int = 50
    ) -> List[CalendarEvent]:
        connection = self._get_active_connection(user_id, connection_id)
        adapter = self.get_provider(connection.provider)
        access_token = self._get_valid_access_token(connection, adapter)
        return adapter.list_events(
            access_token,
            calendar_id or PRIMARY_CALENDAR,
            start_date,
            end_date,
            max_results,
        )

    def _get_active_connection(self, user_id: str, connection_id: Union[str, UUID]) -> CalendarConnection:
        connection_uuid = _as_uuid(connection_id)
        connection = None
        if connection_uuid is not None:
            connection = self.db.query(CalendarConnection).filter(
                CalendarConnection.id == connection_uuid,
                CalendarConnection.user_id == user_id,
                CalendarConnection.is_active == True  # noqa: E712
            ).first()

        if not connection:
            raise NotFoundError("Calendar connection not found or inactive")
        return connection

    def _get_valid_access_token(self, connection: CalendarConnection, adapter: CalendarProviderAdapter) -> str:
        """Get valid access token, refreshing if it has expired and can be refreshed"""
        if not connection.needs_refresh:
            return connection.access_token

        with self.locks.lock_for(str(connection.id)):
            # Another request may have refreshed while we waited for the lock
            self.db.refresh(connection)
            if not connection.is_active:
                raise NotFoundError("Calendar connection not found or inactive")
            if not connection.needs_refresh:
                return connection.access_token

            previous_refresh_token = connection.refresh_token
            try:
                tokens = adapter.refresh_token(previous_refresh_token)
            except CalendarError as e:
                # Any failed refresh leaves the stored token unusable
                logger.error(f"Token refresh failed for connection {connection.id}: {e.message}")
                connection.is_active = False
                connection.updated_at = _utcnow()
                self.db.commit()
                raise ValidationError(RECONNECT_MESSAGE) from e

            connection.access_token = tokens.access_token
            connection.refresh_token = tokens.refresh_token or previous_refresh_token
            connection.token_expires_at = tokens.expires_at
            connection.updated_at = _utcnow()
            self.db.commit()
            logger.info(f"Refreshed access token for connection {connection.id}")
            return tokens.access_token
