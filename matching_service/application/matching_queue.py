import asyncio
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from matching_service.config import config
from matching_service.domain.entities import WaitingEntry, MatchedPair, QueueStatus, WaitingUserStatus
from matching_service.domain.value_objects import UserProfile, MatchPreferences
from matching_service.logconfig import opt_logger as log

logger = log.setup_logger(name='matching queue')


def _now_ms() -> int:
    return int(time.time() * 1000)


class MatchingQueue:
    """
    Очередь поиска собеседника.

    Хранит ожидающих пользователей (в порядке вставки) и найденные пары.
    Поиск - first-fit: первый совместимый кандидат в порядке очереди,
    без скоринга. Все операции синхронные и выполняются под одной
    блокировкой, поэтому enqueue -> поиск -> удаление обоих атомарны.
    """

    def __init__(
            self,
            timeout_ms: Optional[int] = None,
            sweep_interval: Optional[float] = None,
            clock: Optional[Callable[[], int]] = None
    ):
        self.timeout_ms = timeout_ms if timeout_ms is not None else config.matching.timeout_ms
        self.sweep_interval = sweep_interval if sweep_interval is not None else config.matching.sweep_interval
        self._clock = clock or _now_ms

        self.waiting_users: Dict[str, WaitingEntry] = {}
        self.matched_pairs: Dict[str, str] = {}  # user_id -> partner_id
        self.lock = threading.RLock()
        self.cleanup_task: Optional[asyncio.Task] = None

    def enqueue(
            self,
            user_id: str,
            connection_ref: Any,
            profile: UserProfile,
            preferences: Optional[MatchPreferences] = None
    ) -> Optional[MatchedPair]:
        """ Поставить пользователя в очередь и сразу попытаться найти пару """
        if not user_id:
            logger.debug("Enqueue ignored: empty user id")
            return None

        user_id = str(user_id)
        with self.lock:
            # Звонок мог закончиться без call-ended, освобождаем старую пару
            if user_id in self.matched_pairs:
                logger.warning("User %s searching again while matched, releasing previous pair", user_id)
                self._release_pair(user_id)

            # Замена, а не слияние: повторный вход уходит в конец очереди
            self.waiting_users.pop(user_id, None)
            self.waiting_users[user_id] = WaitingEntry(
                user_id=user_id,
                connection_ref=connection_ref,
                profile=profile,
                preferences=preferences or MatchPreferences(),
                enqueued_at=self._clock()
            )
            logger.debug("User %s added to queue, size: %s", user_id, len(self.waiting_users))

            return self.find_match(user_id)

    def find_match(self, user_id: str) -> Optional[MatchedPair]:
        """ Найти первого совместимого кандидата в порядке очереди """
        if not user_id:
            return None

        user_id = str(user_id)
        with self.lock:
            current = self.waiting_users.get(user_id)
            if current is None:
                logger.debug("User %s not in queue", user_id)
                return None

            candidate = next(
                (
                    entry for entry_id, entry in self.waiting_users.items()
                    if entry_id != user_id and self.is_good_match(current, entry)
                ),
                None
            )

            if candidate is None:
                logger.debug("No match found for user %s yet", user_id)
                return None

            del self.waiting_users[current.user_id]
            del self.waiting_users[candidate.user_id]
            self.matched_pairs[current.user_id] = candidate.user_id
            self.matched_pairs[candidate.user_id] = current.user_id

        logger.info("Match found: %s <-> %s", current.user_id, candidate.user_id)
        return MatchedPair(user1=current, user2=candidate, matched_at=self._clock())

    @staticmethod
    def is_good_match(a: WaitingEntry, b: WaitingEntry) -> bool:
        """ Пара допустима, только если предпочтения обоих принимают другого """
        return a.is_compatible_with(b)

    def remove_from_queue(self, user_id: str) -> bool:
        """ Удалить пользователя из очереди ожидания (идемпотентно) """
        if not user_id:
            return False

        with self.lock:
            removed = self.waiting_users.pop(str(user_id), None) is not None

        if removed:
            logger.debug("User %s removed from queue", user_id)
        return removed

    def remove_matched_pair(self, user_id: str) -> Optional[str]:
        """ Удалить пару целиком по любому из участников (идемпотентно) """
        if not user_id:
            return None

        with self.lock:
            return self._release_pair(str(user_id))

    def _release_pair(self, user_id: str) -> Optional[str]:
        partner_id = self.matched_pairs.pop(user_id, None)
        if partner_id is None:
            return None

        self.matched_pairs.pop(partner_id, None)
        logger.debug("Matched pair released: %s <-> %s", user_id, partner_id)
        return partner_id

    def get_partner(self, user_id: str) -> Optional[str]:
        if not user_id:
            return None

        with self.lock:
            return self.matched_pairs.get(str(user_id))

    def is_waiting(self, user_id: str) -> bool:
        if not user_id:
            return False

        with self.lock:
            return str(user_id) in self.waiting_users

    def get_queue_status(self, now: Optional[int] = None) -> QueueStatus:
        """ Снимок очереди только для чтения """
        with self.lock:
            now = now if now is not None else self._clock()
            return QueueStatus(
                waiting_count=len(self.waiting_users),
                matched_pair_count=len(self.matched_pairs) // 2,
                waiting_users=[
                    WaitingUserStatus(
                        user_id=entry.user_id,
                        name=entry.profile.name,
                        waiting_time_ms=entry.age_ms(now)
                    )
                    for entry in self.waiting_users.values()
                ]
            )

    def cleanup_expired_users(self, now: Optional[int] = None) -> List[str]:
        """ Удалить ожидающих дольше таймаута. Пары не затрагиваются """
        with self.lock:
            now = now if now is not None else self._clock()
            expired = [
                user_id for user_id, entry in self.waiting_users.items()
                if entry.is_expired(now, self.timeout_ms)
            ]
            for user_id in expired:
                del self.waiting_users[user_id]

        if expired:
            logger.info("Removed %s expired users from queue: %s", len(expired), expired)
        return expired

    def start(self, on_expired: Optional[Callable[[List[str]], Awaitable[None]]] = None) -> None:
        """ Запустить периодическую очистку. Требует запущенного event loop """
        if self.cleanup_task and not self.cleanup_task.done():
            return

        self.cleanup_task = asyncio.create_task(
            self._cleanup_loop(on_expired), name='matching_queue_sweep'
        )
        logger.debug("Queue sweep started, interval %ss", self.sweep_interval)

    async def stop(self) -> None:
        """ Остановить периодическую очистку """
        if not self.cleanup_task:
            return

        self.cleanup_task.cancel()
        try:
            await self.cleanup_task
        except asyncio.CancelledError:
            pass
        self.cleanup_task = None
        logger.debug("Queue sweep stopped")

    async def _cleanup_loop(self, on_expired):
        """ Фоновая задача для периодической очистки """
        while True:
            try:
                await asyncio.sleep(self.sweep_interval)
                expired = self.cleanup_expired_users()
                if expired and on_expired is not None:
                    await on_expired(expired)
            except asyncio.CancelledError:
                break
            except Exception as e:
                # Очистка должна переживать ошибки колбэка
                logger.error(f"Error in matching queue sweep: {e}")
