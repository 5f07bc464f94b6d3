"""Billing value types: invoice status, notification type, billing period (competência)."""

import calendar
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional


class BoletoStatus(str, Enum):
    OPEN = "OPEN"
    LATE = "LATE"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    DRAFT = "DRAFT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "BoletoStatus":
        try:
            return cls((raw or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


class NotificationType(str, Enum):
    FIVE_DAYS_BEFORE = "5_days_before"
    DUE_TODAY = "due_today"
    TWO_DAYS_LATE = "2_days_late"
    FIVE_DAYS_LATE = "5_days_late"


CHANNEL_WHATSAPP = "WHATSAPP"

_COMPETENCIA_RE = re.compile(r"^(\d{2})/(\d{4})$")


@dataclass(frozen=True)
class Competencia:
    """A billing period: the (month, year) a boleto charges for."""

    mes: int
    ano: int

    def __post_init__(self):
        if not 1 <= self.mes <= 12:
            raise ValueError(f"invalid month: {self.mes}")

    @classmethod
    def of(cls, day: date) -> "Competencia":
        return cls(day.month, day.year)

    @classmethod
    def parse(cls, label: str) -> "Competencia":
        """Parse ``MM/YYYY``."""
        match = _COMPETENCIA_RE.match((label or "").strip())
        if not match:
            raise ValueError("competencia must be in MM/YYYY format")
        return cls(int(match.group(1)), int(match.group(2)))

    @property
    def label(self) -> str:
        return f"{self.mes:02d}/{self.ano}"

    @property
    def first_day(self) -> date:
        return date(self.ano, self.mes, 1)

    @property
    def last_day(self) -> date:
        return date(self.ano, self.mes, calendar.monthrange(self.ano, self.mes)[1])

    def next(self) -> "Competencia":
        if self.mes == 12:
            return Competencia(1, self.ano + 1)
        return Competencia(self.mes + 1, self.ano)

    def due_date(self, dia_vencimento: Optional[int]) -> date:
        """Due date for a company's monthly due-day, clamped to the end of the month."""
        day = dia_vencimento or 15
        return date(self.ano, self.mes, max(1, min(day, self.last_day.day)))


@dataclass(frozen=True)
class DedupKey:
    empresa_id: str
    mes: int
    ano: int
    tipo: str


@dataclass
class SendRecord:
    """A notification outcome about to be appended to the send log."""

    empresa_id: Optional[str]
    boleto_id: Optional[str]
    competencia: Competencia
    tipo_envio: Optional[str]
    sucesso: bool
    detalhe: Optional[str] = None
    canal: str = CHANNEL_WHATSAPP

    @property
    def dedup_key(self) -> Optional[DedupKey]:
        if not self.empresa_id or not self.tipo_envio:
            return None
        return DedupKey(self.empresa_id, self.competencia.mes, self.competencia.ano, self.tipo_envio)
