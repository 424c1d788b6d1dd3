import time

from fastapi import APIRouter, HTTPException, Depends, status, Response
from prometheus_client import CONTENT_TYPE_LATEST

from matching_service.application.interfaces import AbstractMetricsCollector
from matching_service.application.matching_queue import MatchingQueue
from matching_service.application.presence import PresenceRegistry
from matching_service.container import get_matching_queue, get_presence_registry, get_metrics_collector
from matching_service.logconfig import opt_logger as log
from matching_service.models import QueueStatusResponse, ReadyUserModel, HealthResponse, WaitingUserModel

logger = log.setup_logger('queue_endpoints')


router = APIRouter(prefix="/api/v0")


@router.get("/debug/matching-queue", response_model=QueueStatusResponse)
async def get_matching_queue_status(
        queue: MatchingQueue = Depends(get_matching_queue)
) -> QueueStatusResponse:
    """
    Снимок очереди поиска: ожидающие и количество пар
    """
    try:
        queue_status = queue.get_queue_status()
        return QueueStatusResponse(
            waiting_count=queue_status.waiting_count,
            matched_pair_count=queue_status.matched_pair_count,
            waiting_users=[
                WaitingUserModel(**user) for user in queue_status.to_dict()['waiting_users']
            ],
            timestamp=time.time()
        )

    except Exception as e:
        logger.error(f"Failed to get matching queue status: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get matching queue status: {str(e)}"
        )


@router.get("/presence/ready")
async def get_ready_users(
        presence: PresenceRegistry = Depends(get_presence_registry)
):
    """ Пользователи, готовые к разговору """
    users = []
    for user_id, data in presence.get_all_ready():
        metadata = dict(data)
        ready_since = metadata.pop('readySince')
        users.append(ReadyUserModel(user_id=user_id, ready_since=ready_since, metadata=metadata))

    return {
        "online_count": presence.online_count,
        "ready_count": len(users),
        "users": users
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(
        metrics: AbstractMetricsCollector = Depends(get_metrics_collector)
) -> HealthResponse:
    """
    Проверка здоровья сервиса
    """
    if metrics is None:
        return HealthResponse(status="unknown", timestamp=time.time())
    return HealthResponse(**await metrics.get_health_status())


@router.get("/metrics")
async def get_metrics(
    metrics_collector: AbstractMetricsCollector = Depends(get_metrics_collector)
) -> Response:
    """
    Получить метрики сервиса в формате Prometheus
    """
    metrics_data = await metrics_collector.get_metrics()
    content = metrics_data.get('prometheus_metrics', '')
    if not content:
        content = '# No metrics available\n'
    return Response(
        content=content,
        media_type=CONTENT_TYPE_LATEST
    )
