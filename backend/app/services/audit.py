from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlmodel import Session, select

from app.models.audit import AuditLog


class AuditService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record_event(
        self,
        event_type: str,
        actor_type: str | None = None,
        actor_id: UUID | None = None,
        payment_id: str | None = None,
        contract_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict | None = None,
        commit: bool = True,
    ) -> AuditLog:
        log = AuditLog(
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            payment_id=payment_id,
            contract_id=contract_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details or {},
        )
        self.session.add(log)
        if commit:
            self.session.commit()
        return log

    def has_event(self, event_type: str, *, contract_id: UUID | None = None, marker: str | None = None) -> bool:
        """Evita notificações duplicadas: procura um evento com o mesmo marcador."""
        query = select(AuditLog).where(AuditLog.event_type == event_type)
        if contract_id:
            query = query.where(AuditLog.contract_id == contract_id)
        for log in self.session.exec(query).all():
            if marker is None or (log.details or {}).get("marker") == marker:
                return True
        return False

    def list_events(
        self,
        event_type: Optional[str] = None,
        payment_id: Optional[str] = None,
        contract_id: Optional[UUID] = None,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[AuditLog], int]:
        from sqlalchemy import func

        query = select(AuditLog)
        if event_type:
            query = query.where(AuditLog.event_type == event_type)
        if payment_id:
            query = query.where(AuditLog.payment_id == payment_id)
        if contract_id:
            query = query.where(AuditLog.contract_id == contract_id)
        if start_at:
            query = query.where(AuditLog.created_at >= start_at)
        if end_at:
            query = query.where(AuditLog.created_at <= end_at)

        total = self.session.exec(
            select(func.count()).select_from(query.subquery())
        ).one()

        items = self.session.exec(
            query.order_by(AuditLog.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(items), total
