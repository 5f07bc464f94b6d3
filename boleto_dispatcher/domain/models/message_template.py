"""Message template — maps to 'cora_message_templates'."""

from sqlalchemy import Column, String, Text, Boolean

from boleto_dispatcher.infrastructure.database import Base


class CoraMessageTemplate(Base):
    __tablename__ = "cora_message_templates"

    id = Column(String(64), primary_key=True)
    template_key = Column(String(100), nullable=False, index=True)  # before_due, reminder_today, after_due, ...
    message_body = Column(Text, nullable=False, default="")
    is_active = Column(Boolean, default=True)

    def __repr__(self):
        return f"<CoraMessageTemplate {self.template_key}>"
