"""
Case state machine: allowed states and transitions.

Main path (no skipping, no jumping):
  CASE_CREATED → [DECISION_PAUSE_ACTIVE] → VERIFYING → VERIFIED_WITH_UNKNOWNS
  → INSTALL_WINDOW_PROPOSED → INSTALL_WINDOW_ACCEPTED → DECISION_LOCKED
  → VENDOR_AVAIL_CONFIRMED → SHOP_WINDOW_CONFIRMED → SHOP_APPOINTMENT_LOCKED
  → SHIP_TRIGGERED → IN_TRANSIT → DELIVERED → INSTALL_IN_PROGRESS → INSTALLED
  → POST_CONFIRMATION_COMPLETE (terminal)

Any state may move to an EXCEPTION_<TYPE> state. Exception states have no
successor back into the main path.
"""

from enum import Enum
from typing import Optional, Union

EXCEPTION_PREFIX = "EXCEPTION_"


class CaseState(str, Enum):
    CASE_CREATED = "CASE_CREATED"
    DECISION_PAUSE_ACTIVE = "DECISION_PAUSE_ACTIVE"
    VERIFYING = "VERIFYING"
    VERIFIED_WITH_UNKNOWNS = "VERIFIED_WITH_UNKNOWNS"
    INSTALL_WINDOW_PROPOSED = "INSTALL_WINDOW_PROPOSED"
    INSTALL_WINDOW_ACCEPTED = "INSTALL_WINDOW_ACCEPTED"
    DECISION_LOCKED = "DECISION_LOCKED"
    VENDOR_AVAIL_CONFIRMED = "VENDOR_AVAIL_CONFIRMED"
    SHOP_WINDOW_CONFIRMED = "SHOP_WINDOW_CONFIRMED"
    SHOP_APPOINTMENT_LOCKED = "SHOP_APPOINTMENT_LOCKED"
    SHIP_TRIGGERED = "SHIP_TRIGGERED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    INSTALL_IN_PROGRESS = "INSTALL_IN_PROGRESS"
    INSTALLED = "INSTALLED"
    POST_CONFIRMATION_COMPLETE = "POST_CONFIRMATION_COMPLETE"

    # Exception pseudo-states (absorbing)
    EXCEPTION_VENDOR_DELAY = "EXCEPTION_VENDOR_DELAY"
    EXCEPTION_BACKORDER = "EXCEPTION_BACKORDER"
    EXCEPTION_CARRIER_EXCEPTION = "EXCEPTION_CARRIER_EXCEPTION"
    EXCEPTION_MISSED_WINDOW = "EXCEPTION_MISSED_WINDOW"
    EXCEPTION_APPT_MOVED = "EXCEPTION_APPT_MOVED"
    EXCEPTION_DAMAGED = "EXCEPTION_DAMAGED"
    EXCEPTION_CANCELLED = "EXCEPTION_CANCELLED"


class ExceptionType(str, Enum):
    VENDOR_DELAY = "VENDOR_DELAY"
    BACKORDER = "BACKORDER"
    CARRIER_EXCEPTION = "CARRIER_EXCEPTION"
    MISSED_WINDOW = "MISSED_WINDOW"
    APPT_MOVED = "APPT_MOVED"
    DAMAGED = "DAMAGED"
    CANCELLED = "CANCELLED"


class ShipmentState(str, Enum):
    DRAFT = "draft"
    SHIP_TRIGGERED = "SHIP_TRIGGERED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"


class InstallWindowStatus(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"


class CustodyType(str, Enum):
    SUPPLIER_CUSTODY = "SUPPLIER_CUSTODY"
    CARRIER_CUSTODY = "CARRIER_CUSTODY"
    SHOP_CUSTODY = "SHOP_CUSTODY"
    CUSTOMER_CUSTODY = "CUSTOMER_CUSTODY"


EXCEPTION_TYPES = tuple(t.value for t in ExceptionType)
CUSTODY_TYPES = tuple(c.value for c in CustodyType)

# Allowed next state from each state (no skip/jump)
ALLOWED_TRANSITIONS: dict[CaseState, tuple[CaseState, ...]] = {
    CaseState.CASE_CREATED: (CaseState.DECISION_PAUSE_ACTIVE, CaseState.VERIFYING),
    CaseState.DECISION_PAUSE_ACTIVE: (CaseState.VERIFYING,),
    CaseState.VERIFYING: (CaseState.VERIFIED_WITH_UNKNOWNS,),
    CaseState.VERIFIED_WITH_UNKNOWNS: (CaseState.INSTALL_WINDOW_PROPOSED,),
    CaseState.INSTALL_WINDOW_PROPOSED: (CaseState.INSTALL_WINDOW_ACCEPTED,),
    CaseState.INSTALL_WINDOW_ACCEPTED: (CaseState.DECISION_LOCKED,),
    CaseState.DECISION_LOCKED: (CaseState.VENDOR_AVAIL_CONFIRMED,),
    CaseState.VENDOR_AVAIL_CONFIRMED: (CaseState.SHOP_WINDOW_CONFIRMED,),
    CaseState.SHOP_WINDOW_CONFIRMED: (CaseState.SHOP_APPOINTMENT_LOCKED,),
    CaseState.SHOP_APPOINTMENT_LOCKED: (CaseState.SHIP_TRIGGERED,),
    CaseState.SHIP_TRIGGERED: (CaseState.IN_TRANSIT,),
    CaseState.IN_TRANSIT: (CaseState.DELIVERED,),
    CaseState.DELIVERED: (CaseState.INSTALL_IN_PROGRESS,),
    CaseState.INSTALL_IN_PROGRESS: (CaseState.INSTALLED,),
    CaseState.INSTALLED: (CaseState.POST_CONFIRMATION_COMPLETE,),
    CaseState.POST_CONFIRMATION_COMPLETE: (),
    CaseState.EXCEPTION_VENDOR_DELAY: (),
    CaseState.EXCEPTION_BACKORDER: (),
    CaseState.EXCEPTION_CARRIER_EXCEPTION: (),
    CaseState.EXCEPTION_MISSED_WINDOW: (),
    CaseState.EXCEPTION_APPT_MOVED: (),
    CaseState.EXCEPTION_DAMAGED: (),
    CaseState.EXCEPTION_CANCELLED: (),
}

TERMINAL_STATE = CaseState.POST_CONFIRMATION_COMPLETE

# Label of the workflow step that moves a case out of each state.
# Gate messages point users at these.
NEXT_ACTIONS: dict[CaseState, str] = {
    CaseState.CASE_CREATED: "Verify (start)",
    CaseState.DECISION_PAUSE_ACTIVE: "Verify (start)",
    CaseState.VERIFYING: "Verify (done)",
    CaseState.VERIFIED_WITH_UNKNOWNS: "Propose install window",
    CaseState.INSTALL_WINDOW_PROPOSED: "Accept install window",
    CaseState.INSTALL_WINDOW_ACCEPTED: "Lock decision",
    CaseState.DECISION_LOCKED: "Vendor availability confirm",
    CaseState.VENDOR_AVAIL_CONFIRMED: "Shop window confirm",
    CaseState.SHOP_WINDOW_CONFIRMED: "Lock appointment",
    CaseState.SHOP_APPOINTMENT_LOCKED: "Trigger shipment",
    CaseState.SHIP_TRIGGERED: "Shipment in transit",
    CaseState.IN_TRANSIT: "Shipment delivered",
    CaseState.DELIVERED: "Install start",
    CaseState.INSTALL_IN_PROGRESS: "Install complete",
    CaseState.INSTALLED: "Post-confirmation",
}


def coerce_state(value: Union[CaseState, str]) -> CaseState:
    """Return the CaseState for a value, raising ValueError for anything unrecognised"""
    if isinstance(value, CaseState):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Unknown case state: {value!r}")
    return CaseState(value)


def _try_coerce(value) -> Optional[CaseState]:
    try:
        return coerce_state(value)
    except ValueError:
        return None


def is_exception_state(state) -> bool:
    coerced = _try_coerce(state)
    return coerced is not None and coerced.value.startswith(EXCEPTION_PREFIX)


def exception_state_for(exception_type: Union[ExceptionType, str]) -> CaseState:
    """Map an exception type onto its EXCEPTION_<TYPE> pseudo-state"""
    exception_type = ExceptionType(exception_type)
    return CaseState(f"{EXCEPTION_PREFIX}{exception_type.value}")


def can_transition(from_state, to_state) -> bool:
    """
    True iff to_state is an exception state or the direct successor of from_state.
    Unknown states on either side are rejected.
    """
    source = _try_coerce(from_state)
    target = _try_coerce(to_state)
    if source is None or target is None:
        return False
    if is_exception_state(target):
        return True
    return target in ALLOWED_TRANSITIONS[source]


def next_action(state) -> Optional[str]:
    coerced = _try_coerce(state)
    if coerced is None:
        return None
    return NEXT_ACTIONS.get(coerced)
