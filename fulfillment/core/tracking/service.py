# fulfillment/core/tracking/service.py
"""
Менеджер трекинга: операционный статус, позиция, ETA и журнал событий.

Операционный статус трекинга не синхронизируется с бизнес-статусом
заказа/бронирования: их владельцы разные, расхождение допустимо.
"""

from __future__ import annotations

from typing import Optional

from fulfillment.common.constants import TrackingStatus, TypeMsg
from fulfillment.common.exceptions import ForbiddenError, NotFoundError, UnprocessableError
from fulfillment.common.logger import log_info, log_warning
from fulfillment.core.assignment.repository import ProviderRepository
from fulfillment.core.notifications.models import OutgoingNotification
from fulfillment.core.notifications.service import NotificationService
from fulfillment.core.notifications.templates import tracking_update_payload
from fulfillment.core.orders.models import Subject
from fulfillment.core.orders.repository import SubjectRepository
from fulfillment.core.tracking.models import (
    TRACKING_STATUSES,
    TrackingHistoryPage,
    TrackingRecord,
    TrackingUpdate,
    TrackingView,
)
from fulfillment.core.tracking.repository import TrackingRepository
from fulfillment.infra.database import DatabaseManager
from fulfillment.infra.event_bus import DomainEvent, EventBus, EventTypes
from fulfillment.infra.redis_client import RedisClient
from fulfillment.shared.models.common import Actor


def tracking_cache_key(subject_id: str) -> str:
    return f"tracking:{subject_id}"


class TrackingService:
    """Сервис трекинга заказов и бронирований."""

    def __init__(
        self,
        db: DatabaseManager,
        repository: TrackingRepository,
        subjects: SubjectRepository,
        providers: ProviderRepository,
        notifications: NotificationService,
        redis: RedisClient,
        event_bus: EventBus,
        cache_ttl: int = 60,
        history_page_size: int = 50,
        history_max_page_size: int = 100,
    ) -> None:
        self._db = db
        self._repo = repository
        self._subjects = subjects
        self._providers = providers
        self._notifications = notifications
        self._redis = redis
        self._event_bus = event_bus
        self._cache_ttl = cache_ttl
        self._page_size = history_page_size
        self._max_page_size = history_max_page_size

    # =========================================================================
    # ОБНОВЛЕНИЕ
    # =========================================================================

    async def upsert_tracking_status(
        self,
        subject_id: str,
        update: TrackingUpdate,
        actor: Actor,
    ) -> TrackingView:
        """
        Обновляет трекинг и дописывает событие в журнал.

        Писать может только назначенный исполнитель или администратор,
        проверка выполняется здесь, а не в вызывающем коде.

        Raises:
            NotFoundError: объекта нет
            ForbiddenError: актор не назначен на объект
            UnprocessableError: пустое сообщение или статус не из набора объекта
        """
        async with self._db.transaction() as conn:
            subject = await self._subjects.get(subject_id, conn=conn)
            if subject is None:
                raise NotFoundError(f"Subject {subject_id} not found")

            record = await self._repo.get_by_subject(subject_id, conn=conn, for_update=True)
            self._ensure_can_write(record, actor)

            message = update.message.strip()
            if not message:
                raise UnprocessableError("Tracking message is required")

            status = self._resolve_status(subject, record, update.status)
            if record is None:
                record = await self._repo.create(conn, subject_id, subject.subject_type, status)

            record = await self._repo.update_record(
                conn,
                record.id,
                status,
                location=update.location,
                estimated_arrival=update.estimated_arrival,
            )
            await self._repo.append_event(conn, record.id, status, message, location=update.location)

        await log_info(
            f"Трекинг {subject_id}: {status.value}",
            extra={"subject_id": subject_id, "actor_id": actor.user_id},
        )

        await self.invalidate(subject_id)
        await self._notifications.broadcast([
            OutgoingNotification(
                user_id=subject.owner_id,
                payload=tracking_update_payload(subject.subject_type, subject_id, status),
            )
        ])
        await self._event_bus.publish(DomainEvent(
            event_type=EventTypes.TRACKING_UPDATED,
            payload={
                "subject_id": subject_id,
                "subject_type": subject.subject_type.value,
                "status": status.value,
                "actor_id": actor.user_id,
            },
        ))

        return await self._build_view(subject, record)

    @staticmethod
    def _ensure_can_write(record: Optional[TrackingRecord], actor: Actor) -> None:
        if actor.is_admin:
            return
        if record is not None and record.assigned_provider_id == actor.user_id:
            return
        raise ForbiddenError("Only the assigned provider or an admin may update tracking")

    @staticmethod
    def _resolve_status(
        subject: Subject,
        record: Optional[TrackingRecord],
        requested: Optional[str],
    ) -> TrackingStatus:
        allowed = TRACKING_STATUSES[subject.subject_type]
        if requested is None:
            return record.status if record is not None else TrackingStatus.PENDING
        try:
            status = TrackingStatus(requested)
        except ValueError:
            status = None
        if status is None or status not in allowed:
            raise UnprocessableError(
                f"Status '{requested}' is not valid for {subject.subject_type.value}",
                details={"allowed": sorted(s.value for s in allowed)},
            )
        return status

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_tracking(self, subject_id: str, actor: Actor) -> TrackingView:
        """Проекция трекинга с полным журналом (по возрастанию времени)."""
        subject = await self._get_subject(subject_id)

        view = await self._cache_get(subject_id)
        if view is None:
            record = await self._repo.get_by_subject(subject_id)
            view = await self._build_view(subject, record)
            if record is not None:
                await self._cache_set(subject_id, view)

        self._ensure_can_read(subject, view.assigned_provider_id, actor)
        return view.model_copy(update={"subject_status": subject.status})

    async def get_history(
        self,
        subject_id: str,
        actor: Actor,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> TrackingHistoryPage:
        subject = await self._get_subject(subject_id)
        record = await self._repo.get_by_subject(subject_id)
        provider_id = record.assigned_provider_id if record is not None else None
        self._ensure_can_read(subject, provider_id, actor)

        limit = min(limit or self._page_size, self._max_page_size)
        offset = max(offset, 0)
        if record is None:
            return TrackingHistoryPage(subject_id=subject_id, events=[], total=0, limit=limit, offset=offset)

        events = await self._repo.list_events(record.id, limit=limit, offset=offset)
        total = await self._repo.count_events(record.id)
        return TrackingHistoryPage(subject_id=subject_id, events=events, total=total, limit=limit, offset=offset)

    async def track_by_code(self, tracking_code: str) -> TrackingView:
        """Публичный поиск по коду заказа, без контактов исполнителя."""
        subject = await self._subjects.get_by_tracking_code(tracking_code)
        if subject is None:
            raise NotFoundError(f"No order with tracking code {tracking_code}")
        record = await self._repo.get_by_subject(subject.id)
        view = await self._build_view(subject, record)
        return view.public()

    async def _get_subject(self, subject_id: str) -> Subject:
        subject = await self._subjects.get(subject_id)
        if subject is None:
            raise NotFoundError(f"Subject {subject_id} not found")
        return subject

    @staticmethod
    def _ensure_can_read(subject: Subject, assigned_provider_id: Optional[str], actor: Actor) -> None:
        if actor.is_admin:
            return
        readers = {subject.owner_id, *subject.supplier_ids}
        if assigned_provider_id:
            readers.add(assigned_provider_id)
        if subject.provider_id:
            readers.add(subject.provider_id)
        if actor.user_id not in readers:
            raise ForbiddenError("Not allowed to view tracking for this subject")

    async def _build_view(self, subject: Subject, record: Optional[TrackingRecord]) -> TrackingView:
        """Проекция из БД. Без записи трекинга - PENDING без событий."""
        if record is None:
            return TrackingView(
                subject_id=subject.id,
                subject_type=subject.subject_type,
                status=TrackingStatus.PENDING,
                subject_status=subject.status,
                tracking_code=subject.tracking_code,
            )

        provider = None
        if record.assigned_provider_id:
            profile = await self._providers.get_profile(record.assigned_provider_id)
            provider = profile.summary() if profile is not None else None

        return TrackingView(
            subject_id=subject.id,
            subject_type=subject.subject_type,
            status=record.status,
            subject_status=subject.status,
            tracking_code=subject.tracking_code,
            current_location=record.current_location,
            estimated_arrival=record.estimated_arrival,
            assigned_provider_id=record.assigned_provider_id,
            assigned_provider=provider,
            events=await self._repo.list_events(record.id),
            updated_at=record.updated_at,
        )

    # =========================================================================
    # КЭШ
    # =========================================================================

    async def _cache_get(self, subject_id: str) -> Optional[TrackingView]:
        try:
            return await self._redis.get_model(tracking_cache_key(subject_id), TrackingView)
        except Exception as e:
            await log_warning(f"Кэш трекинга недоступен: {e}", extra={"subject_id": subject_id})
            return None

    async def _cache_set(self, subject_id: str, view: TrackingView) -> None:
        try:
            await self._redis.set_model(tracking_cache_key(subject_id), view, ttl=self._cache_ttl)
        except Exception as e:
            await log_warning(f"Не удалось закэшировать трекинг: {e}", extra={"subject_id": subject_id})

    async def invalidate(self, subject_id: str) -> None:
        """Сбрасывает кэш проекции после коммита."""
        try:
            await self._redis.delete(tracking_cache_key(subject_id))
            await log_info(
                f"Кэш трекинга {subject_id} сброшен",
                type_msg=TypeMsg.DEBUG,
                extra={"subject_id": subject_id},
            )
        except Exception as e:
            await log_warning(f"Не удалось сбросить кэш трекинга: {e}", extra={"subject_id": subject_id})
