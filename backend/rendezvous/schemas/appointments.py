"""Appointment Pydantic schemas for API requests and responses.

Wire format is camelCase (``montantHT``, ``dateTime``, ``clientSecret``);
Python attributes stay snake_case.
"""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class CreateAppointmentRequest(CamelModel):
    pro_id: str = Field(min_length=1)
    date_time: dt.date  # local calendar day; the hour comes from time_slot
    time_slot: str = Field(pattern=r"^\d{1,2}:\d{2}$")
    duration: int

    @field_validator("date_time", mode="before")
    @classmethod
    def keep_day_only(cls, value):
        """Accept ``2026-03-12`` as well as ``2026-03-12T00:00:00.000Z``."""
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value


class EvaluationRequest(CamelModel):
    appointment_id: str = Field(min_length=1)
    pro_id: str = Field(min_length=1)
    rating: int


class AppointmentResponse(CamelModel):
    id: str
    pro_id: str
    client_id: str
    duration: int
    date_time: dt.datetime
    time_slot: str
    montant_ht: int = Field(alias="montantHT")
    montant_total: int
    status: str
    stripe_payment_intent_id: str | None = None
    room_id: str | None = None
    pending_payout_since: dt.datetime | None = None
    paid_out_at: dt.datetime | None = None
    pro_share_paid: int | None = None
    last_evaluated_at: dt.datetime | None = None
    created_at: dt.datetime
    updated_at: dt.datetime


class InvoiceResponse(CamelModel):
    invoice_number: str
    appointment_id: str
    user_id: str
    user_role: str
    amount_ht: int = Field(alias="amountHT")
    vat_amount: int
    amount_total: int
    platform_fee: int | None = None


class CreateAppointmentResponse(CamelModel):
    appointment: AppointmentResponse
    client_secret: str | None


class AppointmentEnvelope(CamelModel):
    appointment: AppointmentResponse


class ConfirmAppointmentResponse(CamelModel):
    appointment: AppointmentResponse
    client_invoice: InvoiceResponse
    pro_invoice: InvoiceResponse


class CancelAppointmentResponse(CamelModel):
    updated_appointment: AppointmentResponse


class EvaluationResponse(CamelModel):
    appointment_id: str
    pro_id: str
    total_duration: float
    rating: int
    evaluation_added: bool
