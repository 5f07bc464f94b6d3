"""Company mirrored from the remote system of record — maps to 'cora_empresas'."""

from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime

from boleto_dispatcher.infrastructure.database import Base


class CoraEmpresa(Base):
    __tablename__ = "cora_empresas"

    id = Column(String(64), primary_key=True)
    client_name = Column(String(300), nullable=True)
    cnpj = Column(String(20), nullable=False, index=True)  # digits only
    telefone = Column(String(30), nullable=True)
    dia_vencimento = Column(Integer, default=15)
    valor_mensal = Column(Float, default=0)
    is_active = Column(Boolean, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<CoraEmpresa {self.cnpj} - {self.client_name}>"
