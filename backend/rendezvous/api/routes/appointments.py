"""Appointment API routes: booking, payment authorization, confirmation, cancellation, evaluation."""

from fastapi import APIRouter, Depends

from rendezvous.core.auth import AuthUser, require_auth, require_role
from rendezvous.domain.lifecycle import UserRole
from rendezvous.schemas.appointments import (
    AppointmentEnvelope,
    AppointmentResponse,
    CancelAppointmentResponse,
    ConfirmAppointmentResponse,
    CreateAppointmentRequest,
    CreateAppointmentResponse,
    EvaluationRequest,
    EvaluationResponse,
    InvoiceResponse,
)
from rendezvous.services.container import Services, get_services

router = APIRouter()


@router.post("", response_model=CreateAppointmentResponse, status_code=201)
async def create_appointment(
    request: CreateAppointmentRequest,
    user: AuthUser = Depends(require_role(UserRole.CLIENT)),
    services: Services = Depends(get_services),
):
    """Book an appointment and open a manual-capture payment authorization."""
    created = await services.appointments.create(
        user, request.pro_id, request.date_time, request.time_slot, request.duration
    )
    return CreateAppointmentResponse(
        appointment=AppointmentResponse.model_validate(created.appointment),
        client_secret=created.client_secret,
    )


@router.post("/evaluation", response_model=EvaluationResponse)
async def evaluate_appointment(
    request: EvaluationRequest,
    user: AuthUser = Depends(require_role(UserRole.CLIENT)),
    services: Services = Depends(get_services),
):
    """Record the client's rating; processed later by the daily quality gate."""
    receipt = await services.evaluations.evaluate(request.appointment_id, user, request.pro_id, request.rating)
    return EvaluationResponse.model_validate(receipt)


@router.patch("/{appointment_id}/payment/authorize", response_model=AppointmentEnvelope)
async def authorize_payment(
    appointment_id: str,
    user: AuthUser = Depends(require_role(UserRole.CLIENT)),
    services: Services = Depends(get_services),
):
    appointment = await services.appointments.authorize_payment(appointment_id, user)
    return AppointmentEnvelope(appointment=AppointmentResponse.model_validate(appointment))


@router.patch("/{appointment_id}/confirm", response_model=ConfirmAppointmentResponse)
async def confirm_appointment(
    appointment_id: str,
    user: AuthUser = Depends(require_role(UserRole.PRO)),
    services: Services = Depends(get_services),
):
    """Capture the payment and confirm. Returns both invoices."""
    confirmed = await services.appointments.confirm(appointment_id, user)
    return ConfirmAppointmentResponse(
        appointment=AppointmentResponse.model_validate(confirmed.appointment),
        client_invoice=InvoiceResponse.model_validate(confirmed.client_invoice),
        pro_invoice=InvoiceResponse.model_validate(confirmed.pro_invoice),
    )


@router.patch("/{appointment_id}/cancel", response_model=CancelAppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    user: AuthUser = Depends(require_auth),
    services: Services = Depends(get_services),
):
    appointment = await services.appointments.cancel(appointment_id, user)
    return CancelAppointmentResponse(updated_appointment=AppointmentResponse.model_validate(appointment))
