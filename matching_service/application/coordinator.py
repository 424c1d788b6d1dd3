from typing import Any, Dict, Iterable, List, Optional

from matching_service.application.interfaces import (
    AbstractRealtimeTransport, AbstractUserDirectory, AbstractMetricsCollector
)
from matching_service.application.matching_queue import MatchingQueue
from matching_service.application.presence import PresenceRegistry
from matching_service.domain.entities import MatchedPair, WaitingEntry
from matching_service.domain.exceptions import (
    DomainException, SearchRateLimitedException, UserNotFoundException
)
from matching_service.domain.value_objects import MatchPreferences
from matching_service.infrastructure.services import RateLimiter

from matching_service.logconfig import opt_logger as log
logger = log.setup_logger(name='coordinator')


class SessionCoordinator:
    """
    Связывает очередь поиска, реестр присутствия и realtime-транспорт.

    Каждое событие клиента превращается в вызовы очереди и реестра,
    после чего участникам рассылаются уведомления. Доменные ошибки
    не выходят наружу: клиент получает событие partner-search-error.
    """

    def __init__(
        self,
        matching_queue: MatchingQueue,
        presence: PresenceRegistry,
        transport: AbstractRealtimeTransport,
        user_directory: AbstractUserDirectory,
        metrics_collector: AbstractMetricsCollector,
        rate_limiter: RateLimiter = None
    ):
        self.queue = matching_queue
        self.presence = presence
        self.transport = transport
        self.directory = user_directory
        self.metrics = metrics_collector
        self.rate_limiter = rate_limiter

    async def connect(self, user_id: str, connection_ref: Any) -> None:
        """ Пользователь подключился """
        self.presence.record_connected(user_id, connection_ref)
        await self.metrics.record_online_users(self.presence.online_count)
        await self.transport.broadcast('user-status', {'userId': user_id, 'status': 'online'})
        logger.info(f"User {user_id} connected")

    async def search_for_partner(
        self,
        user_id: str,
        connection_ref: Any,
        preferences: Optional[MatchPreferences] = None
    ) -> Optional[MatchedPair]:
        """
        Начать поиск собеседника
        :returns Найденная пара или None, если пользователь остался в очереди
        """
        try:
            if self.rate_limiter is not None and not await self.rate_limiter.is_allowed(user_id):
                raise SearchRateLimitedException("Too many search requests, try again later")

            await self.metrics.record_search_request(user_id)
            logger.debug(f"User {user_id} looking for partner")

            if self.presence.lookup_connection(user_id) is None:
                self.presence.record_connected(user_id, connection_ref)

            profile = await self.directory.get_profile(user_id)
            if profile is None:
                raise UserNotFoundException(f"User {user_id} not found in directory")

            # Переданные предпочтения сохраняются для следующих поисков
            if preferences is not None:
                await self.directory.save_preferences(user_id, preferences)
            else:
                preferences = await self.directory.get_preferences(user_id) or MatchPreferences()

            # Пока шли запросы к справочнику, соединение могло закрыться
            if self.presence.lookup_connection(user_id) != connection_ref:
                logger.info(f"User {user_id} disconnected during search, not queueing")
                return None

            # Готовность и постановка в очередь без await между ними
            metadata = profile.ready_metadata()
            self.presence.set_ready(user_id, True, metadata)
            pair = self.queue.enqueue(user_id, connection_ref, profile, preferences)

            await self._broadcast_ready_status(user_id, True, metadata)
            status = self.queue.get_queue_status()
            await self.metrics.record_queue_size(status.waiting_count, status.matched_pair_count)

            if pair is None:
                logger.debug(f"User {user_id} added to queue, waiting")
                await self.transport.emit(
                    'partner-search-status',
                    {
                        'success': True,
                        'message': 'Searching for partner...',
                        'queuePosition': status.waiting_count
                    },
                    to=connection_ref
                )
                return None

            await self.metrics.record_match(pair.user2.age_ms(pair.matched_at))
            await self._notify_partner_found(pair)
            return pair

        except UserNotFoundException as e:
            logger.warning(str(e))
            await self.metrics.record_error('user_not_found', user_id)
            await self.transport.emit(
                'random-partner-result',
                {'success': False, 'error': 'User not found'},
                to=connection_ref
            )
            return None

        except DomainException as e:
            logger.warning(f"Partner search rejected for user {user_id}: {e}")
            await self.metrics.record_error(type(e).__name__, user_id)
            await self.transport.emit(
                'partner-search-error',
                {'success': False, 'error': str(e)},
                to=connection_ref
            )
            return None

        except Exception as e:
            logger.error(f"Error finding partner for user {user_id}: {e}")
            await self.metrics.record_error('search_error', user_id)
            raise

    async def cancel_search(self, user_id: str) -> None:
        """ Пользователь отменил поиск """
        removed = self.queue.remove_from_queue(user_id)
        self.presence.clear_ready(user_id)
        if removed:
            await self.metrics.record_search_canceled()

        await self._broadcast_ready_status(user_id, False)
        connection_ref = self.presence.lookup_connection(user_id)
        if connection_ref is not None:
            await self.transport.emit(
                'partner-search-cancelled',
                {'success': True, 'message': 'Search cancelled'},
                to=connection_ref
            )
        logger.info(f"User {user_id} cancelled partner search")

    async def call_ended(self, user_id: str) -> Optional[str]:
        """ Звонок завершен: пара освобождается, готовность снимается """
        partner_id = self.queue.remove_matched_pair(user_id)
        self.presence.clear_ready(user_id)
        await self._broadcast_ready_status(user_id, False)
        logger.info(f"Call ended for user {user_id}, partner: {partner_id}")
        return partner_id

    async def call_disconnected(self, user_id: str) -> Optional[str]:
        """ Звонок оборвался: освобождается только пара """
        partner_id = self.queue.remove_matched_pair(user_id)
        logger.info(f"Call disconnected for user {user_id}, partner: {partner_id}")
        return partner_id

    async def disconnect(self, user_id: str, connection_ref: Any) -> bool:
        """
        Соединение закрыто
        :returns True, если это было текущее соединение пользователя
        """
        removed = self.presence.record_disconnected(user_id, connection_ref)
        self.presence.clear_ready(user_id)
        self.queue.remove_from_queue(user_id)

        await self.metrics.record_online_users(self.presence.online_count)
        if removed:
            await self.transport.broadcast('user-status', {'userId': user_id, 'status': 'offline'})
        await self._broadcast_ready_status(user_id, False)

        logger.info(f"User {user_id} disconnected (current connection: {removed})")
        return removed

    async def set_ready_to_talk(
        self,
        user_id: str,
        connection_ref: Any,
        is_ready: bool,
        data: Optional[Dict[str, Any]] = None
    ) -> None:
        """ Ручное переключение готовности к разговору """
        data = data or {}
        try:
            metadata = {'name': None, 'profilePic': None, 'level': None}
            profile = await self.directory.get_profile(user_id)
            if profile is not None:
                metadata.update(profile.ready_metadata())
            if data.get('level'):
                metadata['level'] = data['level']
            metadata['preferredTopics'] = list(data.get('preferredTopics') or [])

            self.presence.set_ready(user_id, is_ready, metadata)
            await self._broadcast_ready_status(user_id, is_ready, metadata)
            await self.transport.emit(
                'ready-status-updated',
                {'success': True, 'isReady': is_ready},
                to=connection_ref
            )
            logger.debug(f"User {user_id} ready status: {is_ready}")

        except Exception as e:
            logger.error(f"Error setting ready status for user {user_id}: {e}")
            await self.metrics.record_error('ready_status_error', user_id)
            await self.transport.emit(
                'ready-status-updated',
                {'success': False, 'error': 'Failed to update status'},
                to=connection_ref
            )

    async def get_ready_users(self, connection_ref: Any) -> List[Dict[str, Any]]:
        """ Отправить список готовых к разговору """
        users = [{'userId': user_id, **data} for user_id, data in self.presence.get_all_ready()]
        await self.transport.emit('ready-users-list', {'users': users}, to=connection_ref)
        return users

    async def handle_search_expired(self, user_ids: Iterable[str]) -> None:
        """ Колбэк очистки очереди: уведомить тех, чье ожидание истекло """
        user_ids = list(user_ids)
        await self.metrics.record_search_expired(len(user_ids))

        for user_id in user_ids:
            # Уже успел встать в очередь заново
            if self.queue.is_waiting(user_id):
                logger.debug(f"User {user_id} searching again, skipping expiry notice")
                continue

            self.presence.clear_ready(user_id)
            await self._broadcast_ready_status(user_id, False)

            connection_ref = self.presence.lookup_connection(user_id)
            if connection_ref is not None:
                await self.transport.emit(
                    'partner-search-timeout',
                    {'success': False, 'message': 'No partner found, please try again'},
                    to=connection_ref
                )

        status = self.queue.get_queue_status()
        await self.metrics.record_queue_size(status.waiting_count, status.matched_pair_count)

    async def _notify_partner_found(self, pair: MatchedPair) -> None:
        """ Каждый участник получает публичный профиль другого """
        for entry, partner in ((pair.user1, pair.user2), (pair.user2, pair.user1)):
            connection_ref = self._resolve_connection(entry)
            if connection_ref is None:
                logger.warning(f"No connection for matched user {entry.user_id}")
                continue

            await self.transport.emit(
                'partner-found',
                {'success': True, 'partner': partner.profile.to_public_dict(partner.user_id)},
                to=connection_ref
            )

    def _resolve_connection(self, entry: WaitingEntry) -> Any:
        """ Текущее соединение из реестра важнее сохраненного в очереди """
        live = self.presence.lookup_connection(entry.user_id)
        if live is not None and live != entry.connection_ref:
            logger.debug(f"User {entry.user_id} reconnected while waiting, using {live}")
            return live
        return entry.connection_ref

    async def _broadcast_ready_status(
        self,
        user_id: str,
        is_ready: bool,
        user_data: Optional[Dict[str, Any]] = None
    ) -> None:
        await self.transport.broadcast(
            'user-ready-status',
            {'userId': user_id, 'isReady': is_ready, 'userData': user_data or {}}
        )
