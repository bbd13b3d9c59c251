# fulfillment/core/assignment/service.py
"""
Назначение исполнителя (логиста или механика) на заказ или бронирование.
"""

from __future__ import annotations

from fulfillment.common.constants import UserRole
from fulfillment.common.exceptions import ForbiddenError, NotFoundError, UnprocessableError
from fulfillment.common.logger import log_info
from fulfillment.core.assignment.models import AssignmentResult
from fulfillment.core.assignment.repository import ProviderRepository
from fulfillment.core.notifications.models import OutgoingNotification
from fulfillment.core.notifications.service import NotificationService
from fulfillment.core.notifications.templates import assignment_payloads
from fulfillment.core.orders.models import Subject
from fulfillment.core.orders.repository import SubjectRepository
from fulfillment.core.tracking.repository import TrackingRepository
from fulfillment.core.tracking.service import TrackingService
from fulfillment.infra.database import DatabaseManager
from fulfillment.infra.event_bus import DomainEvent, EventBus, EventTypes
from fulfillment.shared.models.common import Actor


class AssignmentService:
    """
    Привязка исполнителя к объекту.

    Повторное назначение перезаписывает предыдущее (last-write-wins),
    снятие назначения перед ним не требуется.
    """

    def __init__(
        self,
        db: DatabaseManager,
        subjects: SubjectRepository,
        providers: ProviderRepository,
        tracking_repository: TrackingRepository,
        tracking: TrackingService,
        notifications: NotificationService,
        event_bus: EventBus,
    ) -> None:
        self._db = db
        self._subjects = subjects
        self._providers = providers
        self._tracking_repo = tracking_repository
        self._tracking = tracking
        self._notifications = notifications
        self._event_bus = event_bus

    async def assign(self, subject_id: str, provider_id: str, actor: Actor) -> AssignmentResult:
        """
        Назначает исполнителя.

        Raises:
            ForbiddenError: не администратор и не поставщик заказа
            NotFoundError: объекта или профиля исполнителя нет
            UnprocessableError: исполнитель не верифицирован/не одобрен или не того типа
        """
        async with self._db.transaction() as conn:
            subject = await self._subjects.get(subject_id, conn=conn)
            if subject is None:
                raise NotFoundError(f"Subject {subject_id} not found")
            self._ensure_can_assign(subject, actor)

            profile = await self._providers.get_profile(provider_id, conn=conn)
            if profile is None:
                raise NotFoundError(f"Provider {provider_id} not found")
            if not profile.is_eligible:
                raise UnprocessableError(
                    "Provider is not eligible for assignment",
                    details={"verified": profile.verified, "approved": profile.approved},
                )
            required = subject.required_provider_type
            if profile.provider_type != required:
                raise UnprocessableError(
                    f"{subject.subject_type.value} requires a {required.value} provider",
                    details={"provider_type": profile.provider_type.value},
                )

            previous = await self._tracking_repo.get_by_subject(subject_id, conn=conn, for_update=True)
            record, created = await self._tracking_repo.upsert_assignment(
                conn, subject_id, subject.subject_type, provider_id
            )
            if not subject.is_order:
                await self._subjects.set_booking_provider(conn, subject_id, provider_id)
            await self._tracking_repo.append_event(
                conn,
                record.id,
                record.status,
                f"Assigned to {profile.display_name}",
            )

        previous_provider_id = previous.assigned_provider_id if previous is not None else None
        await log_info(
            f"Исполнитель {provider_id} назначен на {subject_id}",
            extra={
                "subject_id": subject_id,
                "provider_id": provider_id,
                "previous_provider_id": previous_provider_id,
                "actor_id": actor.user_id,
            },
        )

        provider_payload, requester_payload = assignment_payloads(
            subject.subject_type, subject_id, profile.display_name
        )
        await self._notifications.broadcast([
            OutgoingNotification(user_id=provider_id, payload=provider_payload),
            OutgoingNotification(user_id=subject.owner_id, payload=requester_payload),
        ])
        await self._tracking.invalidate(subject_id)
        await self._event_bus.publish(DomainEvent(
            event_type=EventTypes.PROVIDER_ASSIGNED,
            payload={
                "subject_id": subject_id,
                "subject_type": subject.subject_type.value,
                "provider_id": provider_id,
                "previous_provider_id": previous_provider_id,
                "actor_id": actor.user_id,
            },
        ))

        return AssignmentResult(
            subject_id=subject_id,
            subject_type=subject.subject_type,
            provider=profile.summary(),
            previous_provider_id=previous_provider_id,
            tracking_created=created,
        )

    @staticmethod
    def _ensure_can_assign(subject: Subject, actor: Actor) -> None:
        if actor.is_admin:
            return
        if subject.is_order and actor.role == UserRole.SUPPLIER and actor.user_id in subject.supplier_ids:
            return
        raise ForbiddenError("Only an admin or the order's supplier may assign providers")
