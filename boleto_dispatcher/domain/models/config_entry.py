"""Key/value configuration — maps to 'cora_config'. Values are stored as JSON text."""

from sqlalchemy import Column, String, Text, DateTime

from boleto_dispatcher.infrastructure.database import Base


class CoraConfig(Base):
    __tablename__ = "cora_config"

    chave = Column(String(100), primary_key=True)
    valor = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<CoraConfig {self.chave}>"
