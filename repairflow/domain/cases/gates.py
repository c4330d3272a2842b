"""
Transition gates.

A gate is a cross-entity precondition that must hold in addition to the raw
state-graph edge. The can_* predicates answer yes/no; the check_* functions
raise GateViolation with a message naming the current state and the step to
run next.
"""

import logging
from typing import Optional

from ...errors import GateViolation
from ...state_machine import (
    CaseState,
    InstallWindowStatus,
    TERMINAL_STATE,
    ShipmentState,
    can_transition,
    coerce_state,
    is_exception_state,
    next_action,
)

logger = logging.getLogger(__name__)

_SHIPMENT_ORDER = [s.value for s in ShipmentState]


def _state_of(record) -> Optional[CaseState]:
    try:
        return coerce_state(record.state)
    except ValueError:
        return None


def _state_label(record) -> str:
    return getattr(record.state, "value", record.state)


def _has_accepted_window(case_record) -> bool:
    return any(
        w.status == InstallWindowStatus.ACCEPTED.value for w in (case_record.install_windows or [])
    )


def _pending_shipments(case_record) -> list:
    return [s for s in (case_record.shipments or []) if s.state != ShipmentState.DELIVERED.value]


# ============================================================================
# PREDICATES
# ============================================================================


def can_create_decision_lock(case_record) -> bool:
    """Decision lock only after an install window was accepted"""
    if case_record is None or _state_of(case_record) != CaseState.INSTALL_WINDOW_ACCEPTED:
        return False
    return _has_accepted_window(case_record)


def can_lock_appointment(case_record) -> bool:
    """Appointment lock needs shop window confirmed, a decision lock, a vendor commitment and an accepted window"""
    if case_record is None:
        return False
    return (
        _state_of(case_record) == CaseState.SHOP_WINDOW_CONFIRMED
        and len(case_record.decision_locks or []) > 0
        and len(case_record.vendor_commitments or []) > 0
        and _has_accepted_window(case_record)
    )


def can_trigger_shipment(shipment) -> bool:
    """Ship trigger only for a draft with alerts on, tracking set and carrier webhook registered"""
    if shipment is None:
        return False
    return (
        shipment.state == ShipmentState.DRAFT.value
        and shipment.alerts_enabled is True
        and bool(shipment.tracking_number)
        and shipment.carrier_webhook_registered is True
    )


def can_start_install(case_record) -> bool:
    """Install start only once the case is DELIVERED and every shipment is delivered"""
    if case_record is None or _state_of(case_record) != CaseState.DELIVERED:
        return False
    return not _pending_shipments(case_record)


# ============================================================================
# CHECKS
# ============================================================================


def _reject(case_record, message: str):
    logger.warning(f"⛔ Gate rejected for case {getattr(case_record, 'id', None)}: {message}")
    raise GateViolation(message, current_state=_state_label(case_record))


def _wrong_state_message(case_record, requirement: str) -> str:
    """Requirement sentence plus where the case is and which step actually comes next"""
    current = f'Your case is currently in "{_state_label(case_record)}".'
    if is_exception_state(case_record.state):
        return (
            f"{requirement} {current} Cases in an exception state cannot continue the workflow "
            "until the exception has been triaged by support."
        )
    if _state_of(case_record) == TERMINAL_STATE:
        return f"{requirement} {current} The case is complete and has no further steps."
    step = next_action(case_record.state)
    if step:
        return f'{requirement} {current} Run "{step}" next.'
    return f"{requirement} {current}"


def _missing_prerequisite_message(case_record, requirement: str, prerequisite: str) -> str:
    return (
        f'{requirement} Your case is currently in "{_state_label(case_record)}". '
        f'Run "{prerequisite}" first.'
    )


def check_transition(case_record, target: CaseState, requirement: str) -> None:
    """
    Raise GateViolation unless target is a direct successor of the case state.

    requirement is the sentence explaining what the step needs; the message
    adds the current state and the step the case is actually waiting on.
    """
    if can_transition(case_record.state, target):
        return
    _reject(case_record, _wrong_state_message(case_record, requirement))


def check_state_in(case_record, allowed: tuple, requirement: str) -> None:
    """Raise GateViolation unless the case sits in one of the allowed states (no edge implied)"""
    if _state_of(case_record) in allowed:
        return
    _reject(case_record, _wrong_state_message(case_record, requirement))


def check_can_create_decision_lock(case_record) -> None:
    if can_create_decision_lock(case_record):
        return
    if _state_of(case_record) != CaseState.INSTALL_WINDOW_ACCEPTED:
        _reject(
            case_record,
            _wrong_state_message(
                case_record, "You must accept the install window before locking the decision."
            ),
        )
    _reject(
        case_record,
        _missing_prerequisite_message(
            case_record,
            "No accepted install window was found on this case.",
            "Accept install window",
        ),
    )


def check_can_lock_appointment(case_record) -> None:
    if can_lock_appointment(case_record):
        return
    if _state_of(case_record) != CaseState.SHOP_WINDOW_CONFIRMED:
        _reject(
            case_record,
            _wrong_state_message(
                case_record, "The shop must confirm its window before the appointment can be locked."
            ),
        )
    if not case_record.decision_locks:
        _reject(
            case_record,
            _missing_prerequisite_message(
                case_record, "Appointment lock needs a decision lock on this case.", "Lock decision"
            ),
        )
    if not case_record.vendor_commitments:
        _reject(
            case_record,
            _missing_prerequisite_message(
                case_record,
                "Appointment lock needs a confirmed parts vendor commitment.",
                "Vendor availability confirm",
            ),
        )
    _reject(
        case_record,
        _missing_prerequisite_message(
            case_record,
            "Appointment lock needs an accepted install window.",
            "Accept install window",
        ),
    )


def check_can_trigger_shipment(shipment) -> None:
    if can_trigger_shipment(shipment):
        return
    if shipment.state != ShipmentState.DRAFT.value:
        message = (
            f'Shipment is already in "{shipment.state}" and cannot be triggered again. '
            "Only draft shipments can be triggered."
        )
    elif not shipment.alerts_enabled:
        message = (
            "Cannot trigger: shipment alerts are disabled. "
            'Run "Update shipment" with alertsEnabled=true first.'
        )
    elif not shipment.tracking_number:
        message = (
            "Cannot trigger: shipment has no tracking number. "
            'Run "Update shipment" with a trackingNumber first.'
        )
    else:
        message = (
            "Cannot trigger: carrier webhook is not registered for this shipment. "
            'Run "Update shipment" with carrierWebhookRegistered=true first.'
        )
    logger.warning(f"⛔ Gate rejected for shipment {shipment.id}: {message}")
    raise GateViolation(message, current_state=shipment.state)


def check_can_start_install(case_record) -> None:
    check_transition(
        case_record,
        CaseState.INSTALL_IN_PROGRESS,
        "Parts must be delivered to the shop before install can start.",
    )
    if can_start_install(case_record):
        return
    pending = _pending_shipments(case_record)
    _reject(
        case_record,
        "All parts shipments must be marked as delivered before the shop can start the install. "
        f'{len(pending)} shipment(s) not yet delivered. Run "Shipment delivered" for each of them first.',
    )


def check_shipment_state(shipment, expected: ShipmentState, requirement: str, prerequisite: str) -> None:
    """Raise GateViolation unless the shipment sits in the expected state"""
    if shipment.state == expected.value:
        return
    current = f'Shipment is currently in "{shipment.state}".'
    if shipment.state in _SHIPMENT_ORDER and _SHIPMENT_ORDER.index(shipment.state) > _SHIPMENT_ORDER.index(
        expected.value
    ):
        message = f"{requirement} {current} It has already moved past this step."
    else:
        message = f'{requirement} {current} Run "{prerequisite}" first.'
    logger.warning(f"⛔ Gate rejected for shipment {shipment.id}: {message}")
    raise GateViolation(message, current_state=shipment.state)
