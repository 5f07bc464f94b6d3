"""Invoice (boleto) synced from Cora — maps to 'cora_boletos'."""

import uuid

from sqlalchemy import Column, String, Integer, Date, DateTime

from boleto_dispatcher.infrastructure.database import Base


class CoraBoleto(Base):
    __tablename__ = "cora_boletos"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    cora_invoice_id = Column(String(100), nullable=False, unique=True, index=True)
    empresa_id = Column(String(64), nullable=True, index=True)  # null when no company matches the CNPJ
    cnpj = Column(String(20), nullable=False, default="")
    status = Column(String(20), nullable=False, default="OPEN", index=True)
    total_amount_cents = Column(Integer, default=0)
    due_date = Column(Date, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    competencia_mes = Column(Integer, nullable=True)
    competencia_ano = Column(Integer, nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<CoraBoleto {self.cora_invoice_id} - {self.status}>"
