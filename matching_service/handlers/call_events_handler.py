from typing import Dict, Any

from faststream.rabbit.annotations import RabbitMessage
from pydantic import ValidationError

from matching_service.application.coordinator import SessionCoordinator
from matching_service.application.interfaces import AbstractMetricsCollector
from matching_service.logconfig import opt_logger as log
from matching_service.models import CallEventModel

logger = log.setup_logger(name='call events')


class CallEventsHandler:
    """Обработчик событий завершения звонков от сервиса звонков"""

    def __init__(
            self,
            coordinator: SessionCoordinator,
            metrics_collector: AbstractMetricsCollector
    ):
        self.coordinator = coordinator
        self.metrics = metrics_collector

    async def handle_message(self, data: Dict[str, Any], msg: RabbitMessage) -> None:
        """ Обрабатывать сообщения call-ended / call-disconnected """
        logger.info("Call event received w/ user %s", data.get('user_id') if isinstance(data, dict) else None)

        # Невалидное сообщение повторять бесполезно
        try:
            event = CallEventModel.model_validate(data)
        except ValidationError as e:
            logger.error(f"Invalid call event dropped: {e}")
            await msg.ack()
            return

        try:
            if event.event == 'call-ended':
                await self.coordinator.call_ended(event.user_id)
            else:
                await self.coordinator.call_disconnected(event.user_id)

            await msg.ack()

        except Exception as e:
            logger.error(f"Error processing {event.event} for user {event.user_id}: {e}")
            await self.metrics.record_error('call_event_error', event.user_id)
            await msg.nack()
