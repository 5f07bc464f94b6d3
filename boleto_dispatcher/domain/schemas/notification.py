"""Pydantic schemas for the trigger endpoints."""

from pydantic import BaseModel, Field, field_validator
from typing import Optional

from boleto_dispatcher.domain.schemas.billing import Competencia

MIN_PHONE_DIGITS = 10


class EmpresaPayload(BaseModel):
    nome: str = ""
    cnpj: str = ""
    telefone: str
    apelido: Optional[str] = None

    @field_validator("telefone")
    @classmethod
    def _check_telefone(cls, value: str) -> str:
        if sum(ch.isdigit() for ch in value) < MIN_PHONE_DIGITS:
            raise ValueError(f"telefone must have at least {MIN_PHONE_DIGITS} digits")
        return value


class GatewayOverride(BaseModel):
    wascriptApiUrl: Optional[str] = None
    wascriptToken: Optional[str] = None


class ProcessBoletoRequest(GatewayOverride):
    empresa: EmpresaPayload
    competencia: str
    invoiceId: Optional[str] = None
    mensagem: str = ""

    @field_validator("competencia")
    @classmethod
    def _check_competencia(cls, value: str) -> str:
        Competencia.parse(value)
        return value


class SendReminderRequest(GatewayOverride):
    empresa: EmpresaPayload
    mensagem: str = Field(min_length=1)


class ProcessBoletoResponse(BaseModel):
    success: bool
    pdfSent: bool
    messageSent: bool
    invoiceId: Optional[str] = None
    pdfError: Optional[str] = None


class SendReminderResponse(BaseModel):
    success: bool
    messageSent: bool
