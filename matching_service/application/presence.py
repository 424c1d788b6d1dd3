import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from matching_service.logconfig import opt_logger as log

logger = log.setup_logger(name='presence')


@dataclass
class ReadyEntry:
    """ Пользователь, готовый к разговору """
    ready_since: int  # epoch ms
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'readySince': self.ready_since, **self.metadata}


class PresenceRegistry:
    """
    Реестр присутствия: кто сейчас подключен (user -> соединение) и кто
    готов к разговору (user -> метаданные).

    Две карты независимы: при отключении вызывающая сторона сама
    очищает обе.
    """

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or (lambda: int(time.time() * 1000))
        self.connections: Dict[str, Any] = {}
        self.ready_users: Dict[str, ReadyEntry] = {}
        self.lock = threading.RLock()

    def record_connected(self, user_id: str, connection_ref: Any) -> None:
        if not user_id:
            return

        user_id = str(user_id)
        with self.lock:
            previous = self.connections.get(user_id)
            self.connections[user_id] = connection_ref

        if previous is not None and previous != connection_ref:
            logger.debug("User %s reconnected: %s -> %s", user_id, previous, connection_ref)
        logger.debug("User %s online, total: %s", user_id, self.online_count)

    def record_disconnected(self, user_id: str, connection_ref: Any) -> bool:
        """ Удалить соединение, только если оно текущее для пользователя """
        if not user_id:
            return False

        user_id = str(user_id)
        with self.lock:
            current = self.connections.get(user_id)
            if current is None or current != connection_ref:
                logger.debug(
                    "Keeping user %s online: stale connection %s (current %s)",
                    user_id, connection_ref, current
                )
                return False
            del self.connections[user_id]

        logger.debug("User %s offline, total: %s", user_id, self.online_count)
        return True

    def lookup_connection(self, user_id: str) -> Optional[Any]:
        if not user_id:
            return None

        with self.lock:
            return self.connections.get(str(user_id))

    def is_online(self, user_id: str) -> bool:
        return self.lookup_connection(user_id) is not None

    def online_user_ids(self) -> List[str]:
        with self.lock:
            return list(self.connections)

    @property
    def online_count(self) -> int:
        with self.lock:
            return len(self.connections)

    def set_ready(self, user_id: str, is_ready: bool, metadata: Optional[Dict[str, Any]] = None) -> None:
        if not user_id:
            return

        user_id = str(user_id)
        with self.lock:
            if is_ready:
                self.ready_users[user_id] = ReadyEntry(
                    ready_since=self._clock(),
                    metadata=dict(metadata or {})
                )
            else:
                self.ready_users.pop(user_id, None)

    def is_ready(self, user_id: str) -> bool:
        if not user_id:
            return False

        with self.lock:
            return str(user_id) in self.ready_users

    def get_all_ready(self) -> List[Tuple[str, Dict[str, Any]]]:
        with self.lock:
            return [(user_id, entry.to_dict()) for user_id, entry in self.ready_users.items()]

    def clear_ready(self, user_id: str) -> None:
        """ Безусловно снять готовность (используется при отключении) """
        if not user_id:
            return

        with self.lock:
            self.ready_users.pop(str(user_id), None)
