from typing import Any, Dict, Optional

import jwt
import socketio
from pydantic import ValidationError

from matching_service.application.coordinator import SessionCoordinator
from matching_service.application.interfaces import AbstractRealtimeTransport
from matching_service.config import AuthConfig, config
from matching_service.domain.exceptions import DomainException
from matching_service.logconfig import opt_logger as log
from matching_service.models import SearchRequestModel, ReadyToTalkModel

logger = log.setup_logger(name='realtime')


def _header(scope: dict, name: str) -> Optional[str]:
    target = name.encode().lower()
    for key, value in scope.get("headers", []):
        if key.lower() == target:
            return value.decode()
    return None


class SocketIOTransport(AbstractRealtimeTransport):
    """ Realtime-транспорт поверх socketio.AsyncServer. Соединение = sid """

    def __init__(self, server: socketio.AsyncServer, namespace: str = "/"):
        self.server = server
        self.namespace = namespace

    async def emit(self, event: str, payload: Dict[str, Any], to: Any) -> None:
        await self.server.emit(event, payload, to=to, namespace=self.namespace)

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        await self.server.emit(event, payload, namespace=self.namespace)


class PartnerNamespace(socketio.AsyncNamespace):
    """
    Socket.IO namespace поиска собеседника.

    Подключение требует JWT (auth.token или заголовок Authorization),
    события клиента передаются в SessionCoordinator.
    """

    def __init__(
            self,
            coordinator: SessionCoordinator,
            namespace: str = "/",
            auth_config: AuthConfig = None
    ):
        super().__init__(namespace)
        self.coordinator = coordinator
        self.auth_config = auth_config or config.auth
        self.sessions: Dict[str, str] = {}  # sid -> user_id

    async def trigger_event(self, event, *args):
        # Клиент шлет события через дефис: find-random-partner -> on_find_random_partner
        return await super().trigger_event(event.replace('-', '_'), *args)

    def _authenticate(self, environ: dict, auth: Optional[dict]) -> str:
        """ Достать ID пользователя из JWT. ValueError / jwt.InvalidTokenError при ошибке """
        token = (auth or {}).get("token")
        if not token:
            header = _header(environ.get("asgi.scope", {}), "authorization") or ""
            if header.lower().startswith("bearer "):
                token = header[7:].strip()

        if not token:
            raise ValueError("missing_token")

        payload = jwt.decode(
            token,
            self.auth_config.jwt_secret,
            algorithms=[self.auth_config.jwt_algorithm]
        )
        user_id = payload.get(self.auth_config.user_id_claim)
        if not user_id:
            raise jwt.InvalidTokenError(f"missing_claim:{self.auth_config.user_id_claim}")
        return str(user_id)

    async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
        try:
            user_id = self._authenticate(environ, auth)
        except (ValueError, jwt.InvalidTokenError) as e:
            logger.warning(f"Socket {sid} rejected: {e}")
            raise socketio.exceptions.ConnectionRefusedError("unauthorized") from None

        self.sessions[sid] = user_id
        await self.coordinator.connect(user_id, sid)
        logger.debug(f"Socket {sid} authenticated as user {user_id}")

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        user_id = self.sessions.pop(sid, None)
        if user_id is None:
            logger.debug(f"Socket {sid} disconnected without user")
            return

        await self.coordinator.disconnect(user_id, sid)

    async def on_find_random_partner(self, sid: str, data: Optional[dict] = None) -> None:
        user_id = self.sessions.get(sid)
        if user_id is None:
            await self.emit('partner-search-error', {'success': False, 'error': 'Not authenticated'}, to=sid)
            return

        try:
            request = SearchRequestModel.model_validate(data or {})
            preferences = request.preferences.to_domain() if request.preferences else None
        except (ValidationError, DomainException) as e:
            logger.warning(f"Invalid search request from user {user_id}: {e}")
            await self.emit('partner-search-error', {'success': False, 'error': 'Invalid preferences'}, to=sid)
            return

        await self.coordinator.search_for_partner(user_id, sid, preferences)

    async def on_cancel_partner_search(self, sid: str, data: Optional[dict] = None) -> None:
        user_id = self.sessions.get(sid)
        if user_id is not None:
            await self.coordinator.cancel_search(user_id)

    async def on_call_ended(self, sid: str, data: Optional[dict] = None) -> None:
        user_id = self.sessions.get(sid)
        if user_id is not None:
            await self.coordinator.call_ended(user_id)

    async def on_call_disconnected(self, sid: str, data: Optional[dict] = None) -> None:
        user_id = self.sessions.get(sid)
        if user_id is not None:
            await self.coordinator.call_disconnected(user_id)

    async def on_set_ready_to_talk(self, sid: str, data: Optional[dict] = None) -> None:
        user_id = self.sessions.get(sid)
        if user_id is None:
            await self.emit('ready-status-updated', {'success': False, 'error': 'User not authenticated'}, to=sid)
            return

        try:
            request = ReadyToTalkModel.model_validate(data or {})
        except ValidationError as e:
            logger.warning(f"Invalid ready status from user {user_id}: {e}")
            await self.emit('ready-status-updated', {'success': False, 'error': 'Failed to update status'}, to=sid)
            return

        await self.coordinator.set_ready_to_talk(
            user_id,
            sid,
            request.status,
            {'level': request.level, 'preferredTopics': request.preferred_topics}
        )

    async def on_get_ready_users(self, sid: str, data: Optional[dict] = None) -> None:
        await self.coordinator.get_ready_users(sid)
