"""Appointment lifecycle state machine.

Status:        pendiente -> en_curso -> completado
               pendiente | en_curso -> cancelado
Confirmation:  no_enviada -> enviada -> confirmado
               no_enviada | enviada -> cancelado (also cancels the appointment)
"""

import logging
from datetime import datetime, timedelta

from ...config import START_WINDOW_MINUTES
from ...models import Appointment
from ...shared.errors import StateTransitionError

logger = logging.getLogger(__name__)

PENDING = "pendiente"
IN_PROGRESS = "en_curso"
COMPLETED = "completado"
CANCELLED = "cancelado"
STATUSES = (PENDING, IN_PROGRESS, COMPLETED, CANCELLED)

NOT_SENT = "no_enviada"
SENT = "enviada"
CONFIRMED = "confirmado"
CLIENT_CANCELLED = "cancelado"
CONFIRMATION_STATUSES = (NOT_SENT, SENT, CONFIRMED, CLIENT_CANCELLED)

CONFIRMATION_TRANSITIONS = {
    NOT_SENT: {SENT, CLIENT_CANCELLED},
    SENT: {CONFIRMED, CLIENT_CANCELLED},
    CONFIRMED: set(),
    CLIENT_CANCELLED: set(),
}


def can_start(appointment: Appointment, now: datetime) -> bool:
    return appointment.status == PENDING and now >= appointment.start_at - timedelta(
        minutes=START_WINDOW_MINUTES
    )


def start(appointment: Appointment, now: datetime) -> None:
    if appointment.status != PENDING:
        raise StateTransitionError(
            f"Appointment {appointment.id} cannot be started from status '{appointment.status}'"
        )
    if not can_start(appointment, now):
        raise StateTransitionError(
            f"Appointment {appointment.id} can only be started from "
            f"{START_WINDOW_MINUTES} minutes before its scheduled start"
        )
    appointment.status = IN_PROGRESS
    appointment.started_at = now
    logger.info(f"▶️ Appointment {appointment.id} started")


def cancel(appointment: Appointment, now: datetime) -> None:
    if appointment.status == COMPLETED:
        raise StateTransitionError(f"Appointment {appointment.id} is completed and cannot be cancelled")
    if appointment.status == CANCELLED:
        raise StateTransitionError(f"Appointment {appointment.id} is already cancelled")
    appointment.status = CANCELLED
    appointment.cancelled_at = now
    logger.info(f"🚫 Appointment {appointment.id} cancelled")


def complete(appointment: Appointment, now: datetime) -> None:
    """Close an appointment; reachable only through a settlement"""
    if appointment.status != IN_PROGRESS:
        raise StateTransitionError(
            f"Appointment {appointment.id} must be in progress to be settled (status '{appointment.status}')"
        )
    appointment.status = COMPLETED
    appointment.finished_at = now


def ensure_editable(appointment: Appointment, now: datetime) -> None:
    if appointment.status != PENDING:
        raise StateTransitionError(
            f"Appointment {appointment.id} can only be edited while pending (status '{appointment.status}')"
        )
    if appointment.start_at <= now:
        raise StateTransitionError(f"Appointment {appointment.id} has already started and cannot be edited")


def apply_confirmation(appointment: Appointment, confirmation_status: str, now: datetime) -> None:
    current = appointment.confirmation_status or NOT_SENT
    if confirmation_status == current:
        return
    if appointment.status != PENDING:
        raise StateTransitionError(
            f"Confirmation of appointment {appointment.id} can only change while pending"
        )
    if confirmation_status not in CONFIRMATION_TRANSITIONS.get(current, set()):
        raise StateTransitionError(
            f"Confirmation cannot move from '{current}' to '{confirmation_status}'"
        )
    appointment.confirmation_status = confirmation_status
    if confirmation_status == CLIENT_CANCELLED:
        cancel(appointment, now)


def transition(appointment: Appointment, status: str, now: datetime) -> None:
    """Apply a status change requested through the API"""
    if status == appointment.status and status == PENDING:
        return
    if status == IN_PROGRESS:
        start(appointment, now)
    elif status == CANCELLED:
        cancel(appointment, now)
    elif status == COMPLETED:
        raise StateTransitionError("Appointments are completed through a settlement")
    else:
        raise StateTransitionError(
            f"Appointment {appointment.id} cannot move from '{appointment.status}' to '{status}'"
        )


def ensure_in_progress(appointment: Appointment) -> None:
    if appointment.status != IN_PROGRESS:
        raise StateTransitionError(
            f"Appointment {appointment.id} must be in progress to be settled (status '{appointment.status}')"
        )
