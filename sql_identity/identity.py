"""Per-request identity and its write-phase state machine."""
import base64
from datetime import datetime
import enum
import logging
import secrets

from fastapi import Response, status
from fastapi.responses import JSONResponse

from sql_identity.exceptions import HeaderEncodingError, StoreError
from sql_identity.schemas.identity import SessionFields
from sql_identity.store import SessionStore

logger = logging.getLogger(__name__)

TOKEN_BYTES = 24


def generate_token(nbytes: int = TOKEN_BYTES) -> str:
    """Generate a random session token as standard base64 text."""
    return base64.b64encode(secrets.token_bytes(nbytes)).decode("ascii")


def encode_header_value(value: str) -> str:
    """Return ``value`` if it can be sent verbatim as a header value."""
    try:
        value.encode("latin-1")
    except UnicodeEncodeError as exc:
        raise HeaderEncodingError("token is not latin-1 encodable") from exc
    if not value or any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value):
        raise HeaderEncodingError("token contains control characters")
    return value


class IdentityState(enum.Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    DELETED = "deleted"


class Identity:
    """Identity of one request.

    Handlers call :meth:`remember` or :meth:`forget`; the middleware then
    calls :meth:`write` once to persist whatever the handler asked for.
    """

    def __init__(
        self,
        store: SessionStore,
        header_name: str,
        token: str | None = None,
        subject: str | None = None,
        client_ip: str | None = None,
        user_agent: str | None = None,
        created_at: datetime | None = None,
    ):
        self.state = IdentityState.UNCHANGED
        self.token = token
        self.subject = subject
        self.client_ip = client_ip
        self.user_agent = user_agent
        self.created_at = created_at
        self._store = store
        self._header_name = header_name
        self._issued = False

    @property
    def is_authenticated(self) -> bool:
        return self.subject is not None

    def current_subject(self) -> str | None:
        return self.subject

    def remember(self, subject: str) -> None:
        """Start a session for ``subject`` under a freshly minted token."""
        self.subject = subject
        self.token = generate_token()
        self.created_at = None
        self._issued = True
        self.state = IdentityState.CHANGED

    def forget(self) -> None:
        """End the session; the token is kept so the record can be deleted."""
        self.subject = None
        self._issued = False
        self.state = IdentityState.DELETED

    def refresh(self) -> None:
        """Re-save the current session's metadata without rotating its token."""
        self._issued = False
        self.state = IdentityState.CHANGED

    async def write(self, response: Response) -> Response:
        """Persist pending changes and return the response to send."""
        state, self.state = self.state, IdentityState.UNCHANGED

        if state is IdentityState.UNCHANGED:
            return response

        if state is IdentityState.CHANGED and self.token and self.subject:
            return await self._save(response)

        if state is IdentityState.DELETED and self.token:
            return await self._remove(response)

        logger.warning(f"Identity write in state {state.value} without an active session")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": "No active session"},
        )

    async def _save(self, response: Response) -> Response:
        try:
            header_value = encode_header_value(self.token)
        except HeaderEncodingError as exc:
            logger.error(f"Refusing to store session token: {exc}")
            return _server_error()

        fields = SessionFields(
            token=self.token,
            subject=self.subject,
            ip=self.client_ip,
            user_agent=self.user_agent,
        )
        try:
            if self._issued:
                await self._store.create(fields)
            else:
                await self._store.update(fields)
        except StoreError:
            return _server_error()

        self._issued = False
        response.headers[self._header_name] = header_value
        return response

    async def _remove(self, response: Response) -> Response:
        try:
            await self._store.delete(self.token)
        except StoreError:
            return _server_error()
        self.token = None
        return response

    def __repr__(self) -> str:
        return f"<Identity subject={self.subject!r} state={self.state.value}>"


def _server_error() -> Response:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Unable to persist identity"},
    )
