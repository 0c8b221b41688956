"""Gmail implementation of the MailProvider contract.

Lists message ids for a search query and fetches full messages, converting
them to MailItem. Google's client library is blocking; every API call runs
in a worker thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from mail_archive_sync.config import Settings
from mail_archive_sync.exceptions import AuthenticationError, ConfigurationError, GmailAPIError
from mail_archive_sync.gmail.parsing import message_to_mail_item
from mail_archive_sync.models import MailItem, UserProfile

if TYPE_CHECKING:
    from mail_archive_sync.cache.session_store import SessionStore

logger = structlog.get_logger()

_AUTH_STATUS_CODES = {401, 403}


class GmailClient:
    """Gmail API client for message listing and retrieval.

    Implements the MailProvider protocol. When a SessionStore is supplied, a
    still-valid stored access token is reused instead of running the OAuth
    flow, and every fresh authentication is persisted into it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session_store: SessionStore | None = None,
    ) -> None:
        """Initialize Gmail client.

        Args:
            settings: Application settings. If None, uses default settings.
            session_store: Optional store for the short-lived access token.
        """
        from mail_archive_sync.config import get_settings

        self.settings = settings or get_settings()
        self.session_store = session_store
        self._service: Any | None = None
        self._profile: UserProfile | None = None
        logger.info("gmail_client_initialized")

    @property
    def account_id(self) -> str | None:
        return self._profile.email if self._profile else None

    async def authenticate(self) -> None:
        """Authenticate with Gmail API using OAuth2.

        Raises:
            ConfigurationError: If no credentials are available at all.
            AuthenticationError: If authentication fails.
        """

        if self._service is not None:
            return

        session = self.session_store.retrieve() if self.session_store is not None else None
        if session is not None:
            logger.info("gmail_authentication_from_session", account=session.profile.email)
            try:
                self._service = await asyncio.to_thread(self._build_service_from_token, session.access_token)
            except Exception as exc:  # noqa: BLE001
                logger.exception("gmail_authentication_failed", error=str(exc))
                raise AuthenticationError(f"{exc}. Please sign in again.") from exc
            self._profile = session.profile
            return

        credentials_path = Path(self.settings.gmail_credentials_path)
        token_path = Path(self.settings.gmail_token_path)
        scope = self.settings.gmail_scope

        if not credentials_path.exists() and not token_path.exists():
            raise ConfigurationError(
                f"Gmail credentials file not found: {credentials_path}. "
                "Download OAuth client credentials and run `mail-sync auth login`."
            )

        logger.info(
            "gmail_authentication_started",
            credentials_path=str(credentials_path),
            token_path=str(token_path),
            scope=scope,
        )

        try:
            self._service, access_token = await asyncio.to_thread(
                self._build_service,
                credentials_path,
                token_path,
                scope,
            )
            self._profile = await asyncio.to_thread(self._get_profile_sync)
        except Exception as exc:  # noqa: BLE001
            self._service = None
            logger.exception("gmail_authentication_failed", error=str(exc))
            raise AuthenticationError(f"{exc}. Please sign in again.") from exc

        if self.session_store is not None and access_token:
            self.session_store.persist(access_token, self._profile)

        logger.info("gmail_authentication_completed", account=self.account_id)

    async def list_message_ids(self, query: str, max_results: int | None = None) -> list[str]:
        """List message ids matching a Gmail search query.

        Args:
            query: Gmail search query string.
            max_results: Maximum number of ids to return. Defaults to
                settings.gmail_list_max_results.

        Returns:
            Message ids in the order Gmail returns them.

        Raises:
            AuthenticationError: If the client is not authenticated or the
                token was rejected.
            GmailAPIError: If the API request fails.
        """

        await self._ensure_authenticated()

        resolved_max = max_results if max_results is not None else self.settings.gmail_list_max_results
        logger.info("listing_messages", max_results=resolved_max, query=query)

        try:
            messages = await asyncio.to_thread(self._list_messages_sync, resolved_max, query)
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_list_messages_failed", error=str(exc))
            raise self._translate_error(exc) from exc

        return [m["id"] for m in messages if isinstance(m.get("id"), str) and m["id"]]

    async def get_message(self, message_id: str) -> MailItem:
        """Get a specific message by ID.

        Args:
            message_id: The Gmail message ID.

        Returns:
            Parsed MailItem.

        Raises:
            AuthenticationError: If the token was rejected.
            GmailAPIError: If the API request fails.
        """

        await self._ensure_authenticated()

        logger.debug("getting_message", message_id=message_id)

        try:
            raw = await asyncio.to_thread(self._get_message_sync, message_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_get_message_failed", message_id=message_id, error=str(exc))
            raise self._translate_error(exc) from exc

        return message_to_mail_item(raw)

    async def _ensure_authenticated(self) -> None:
        if self._service is None:
            raise AuthenticationError(
                "Gmail client is not authenticated. Call await GmailClient.authenticate() first."
            )

    @staticmethod
    def _translate_error(exc: Exception) -> Exception:
        status = getattr(getattr(exc, "resp", None), "status", None)
        try:
            status = int(status) if status is not None else None
        except (TypeError, ValueError):
            status = None
        if status in _AUTH_STATUS_CODES:
            return AuthenticationError(f"Gmail rejected the access token ({status}). Please sign in again.")
        return GmailAPIError(str(exc))

    def _build_service(self, credentials_path: Path, token_path: Path, scope: str) -> tuple[Any, str | None]:
        # Google libraries are only needed once a real sign-in happens.
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build

        creds: Credentials | None = None
        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), scopes=[scope])

        if creds is not None and creds.expired and creds.refresh_token:
            creds.refresh(Request())

        if creds is None or not creds.valid:
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes=[scope])
            creds = flow.run_local_server(port=0)
            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(creds.to_json(), encoding="utf-8")

        # No on-disk discovery cache.
        return build("gmail", "v1", credentials=creds, cache_discovery=False), creds.token

    def _build_service_from_token(self, access_token: str) -> Any:
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build

        creds = Credentials(token=access_token)
        return build("gmail", "v1", credentials=creds, cache_discovery=False)

    def _get_profile_sync(self) -> UserProfile:
        assert self._service is not None
        response = self._service.users().getProfile(userId=self.settings.gmail_user_id).execute()
        return UserProfile(email=str(response.get("emailAddress") or "unknown"))

    def _list_messages_sync(self, max_results: int, query: str | None) -> list[dict[str, Any]]:
        assert self._service is not None
        user_id = self.settings.gmail_user_id
        messages: list[dict[str, Any]] = []

        page_token: str | None = None
        while len(messages) < max_results:
            per_page = min(500, max_results - len(messages))

            request = (
                self._service.users()
                .messages()
                .list(userId=user_id, maxResults=per_page, q=query, pageToken=page_token)
            )
            response = request.execute()
            messages.extend(response.get("messages", []) or [])
            page_token = response.get("nextPageToken")
            if page_token is None:
                break

        return messages[:max_results]

    def _get_message_sync(self, message_id: str) -> dict[str, Any]:
        assert self._service is not None
        request = (
            self._service.users()
            .messages()
            .get(userId=self.settings.gmail_user_id, id=message_id, format="full")
        )
        return request.execute()
