"""Send log — one row per notification attempt. Append-only; successful rows are the dedup ledger."""

import uuid

from sqlalchemy import Column, String, Integer, Text, Boolean, DateTime, Index
from sqlalchemy.sql import func

from boleto_dispatcher.infrastructure.database import Base


class CoraEnvio(Base):
    __tablename__ = "cora_envios"
    __table_args__ = (
        Index("idx_cora_envios_dedup", "empresa_id", "competencia_mes", "competencia_ano", "tipo_envio"),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    empresa_id = Column(String(64), nullable=True)
    boleto_id = Column(String(64), nullable=True)
    competencia_mes = Column(Integer, nullable=True)
    competencia_ano = Column(Integer, nullable=True)
    canal = Column(String(30), nullable=True)  # WHATSAPP
    sucesso = Column(Boolean, default=False)
    detalhe = Column(Text, nullable=True)
    tipo_envio = Column(String(30), nullable=True)  # 5_days_before, due_today, 2_days_late, 5_days_late
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<CoraEnvio {self.empresa_id} {self.tipo_envio} - {'ok' if self.sucesso else 'failed'}>"
