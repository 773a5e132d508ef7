from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from samap.models.trace import ProcessTrace


class TraceAction:
    VENTA_CREADA = "venta_creada"
    DOCUMENTOS_CARGADOS = "documentos_cargados"
    DDJJ_COMPLETADA = "ddjj_completada"
    ENVIADO_A_AUDITORIA = "enviado_a_auditoria"
    APROBADO = "aprobado"
    RECHAZADO = "rechazado"
    TEMPLATES_SELECCIONADOS = "templates_seleccionados"
    DOCUMENTOS_GENERADOS = "documentos_generados"
    ENLACE_FIRMA_CREADO = "enlace_firma_creado"
    FIRMA_COMPLETADA = "firma_completada"
    VENTA_COMPLETADA = "venta_completada"
    CAMBIO_ESTADO = "cambio_estado"
    ESTADO_ACTUALIZADO = "estado_actualizado"


ACTION_LABELS: dict[str, str] = {
    TraceAction.VENTA_CREADA: "Venta creada",
    TraceAction.DOCUMENTOS_CARGADOS: "Documentos cargados",
    TraceAction.DDJJ_COMPLETADA: "DDJJ completada",
    TraceAction.ENVIADO_A_AUDITORIA: "Enviado a auditoría",
    TraceAction.APROBADO: "Aprobado por auditor",
    TraceAction.RECHAZADO: "Rechazado por auditor",
    TraceAction.TEMPLATES_SELECCIONADOS: "Templates seleccionados",
    TraceAction.DOCUMENTOS_GENERADOS: "Documentos generados",
    TraceAction.ENLACE_FIRMA_CREADO: "Enlace de firma creado",
    TraceAction.FIRMA_COMPLETADA: "Firma completada",
    TraceAction.VENTA_COMPLETADA: "Venta completada",
    TraceAction.ESTADO_ACTUALIZADO: "Estado actualizado",
    TraceAction.CAMBIO_ESTADO: "Cambio de estado",
}


class ProcessTraceService:
    """Bitácora de solo-agregado de la venta.

    `record` no hace commit: quien la llama escribe el cambio de estado y la
    traza en la misma transacción.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def record(
        self,
        sale_id: UUID | None,
        action: str,
        *,
        created_by: UUID | None = None,
        client_action: bool = False,
        details: dict | None = None,
    ) -> ProcessTrace:
        trace = ProcessTrace(
            sale_id=sale_id,
            action=action,
            created_by=created_by,
            client_action=client_action,
            details=details or {},
        )
        self.session.add(trace)
        return trace

    def list_for_sale(
        self,
        sale_id: UUID,
        action: Optional[str] = None,
        start_at: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> tuple[list[ProcessTrace], int]:
        query = select(ProcessTrace).where(ProcessTrace.sale_id == sale_id)
        if action:
            query = query.where(ProcessTrace.action == action)
        if start_at:
            query = query.where(ProcessTrace.created_at >= start_at)

        total = self.session.exec(
            select(func.count()).select_from(query.subquery())
        ).one()

        items = self.session.exec(
            query.order_by(ProcessTrace.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(items), total
