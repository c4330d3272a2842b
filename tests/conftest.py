"""
Pytest configuration and fixtures: in-memory database, seeded actors,
bearer tokens and a driver that walks a case through the workflow.
"""

import os
from datetime import datetime, timedelta, timezone

# Configure before anything imports repairflow.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-repairflow"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ.pop("REDIS_URL", None)
os.environ.pop("CARRIER_WEBHOOK_SECRET", None)

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from repairflow import models_case, models_shipment  # noqa: F401
from repairflow.config import JWT_ALGORITHM, SECRET_KEY
from repairflow.database import Base, SessionLocal, engine
from repairflow.domain.cases.schemas import (
    AppointmentLockRequest,
    CaseCreate,
    DecisionLockCreate,
    InstallWindowAcceptance,
    InstallWindowProposal,
    VerifyRequest,
)
from repairflow.domain.cases.service import CaseService
from repairflow.domain.shipments.schemas import ShipmentCreate
from repairflow.domain.shipments.service import ShipmentService
from repairflow.domain.vendors.schemas import AvailabilityConfirm
from repairflow.domain.vendors.service import VendorService
from repairflow.idempotency import carrier_event_dedup
from repairflow.main import app
from repairflow.models import Shop, User, Vehicle, Vendor
from repairflow.state_machine import CaseState

WINDOW_START = datetime(2025, 1, 10, 9, 0, 0)
WINDOW_END = datetime(2025, 1, 10, 17, 0, 0)


@pytest.fixture(autouse=True)
def _schema():
    """Fresh tables and an empty carrier-event cache for every test"""
    Base.metadata.create_all(bind=engine)
    carrier_event_dedup._memory.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    user = User(email="driver@example.com", full_name="Dana Driver")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def other_user(db):
    user = User(email="someone.else@example.com", full_name="Sam Else")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def vehicle(db, user):
    vehicle = Vehicle(user_id=user.id, make="Subaru", model="Outback", year=2019, vin="4S4BSANC1K3200000")
    db.add(vehicle)
    db.commit()
    return vehicle


@pytest.fixture
def shop(db):
    shop = Shop(name="Northside Auto", status="approved")
    db.add(shop)
    db.commit()
    return shop


@pytest.fixture
def vendor(db):
    vendor = Vendor(name="Parts Direct")
    db.add(vendor)
    db.commit()
    return vendor


def make_token(user_id: str, expires_in: timedelta = timedelta(hours=1)) -> str:
    claims = {"sub": user_id, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(claims, SECRET_KEY, algorithm=JWT_ALGORITHM)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {make_token(user.id)}"}


def decision_lock_request(**overrides) -> DecisionLockCreate:
    data = {
        "verifiedFacts": ["Front pads at 2mm", "Rotor scoring on left front"],
        "unknowns": ["Caliper slide pin condition"],
        "remainingRisks": ["Caliper may need replacement once disassembled"],
        "installWindowStart": WINDOW_START,
        "installWindowEnd": WINDOW_END,
        "consentData": True,
        "clientIp": "203.0.113.7",
        "deviceInfo": "pytest",
        "version": "1",
    }
    data.update(overrides)
    return DecisionLockCreate(**data)


def ready_shipment(**overrides) -> ShipmentCreate:
    data = {"trackingNumber": "1Z999AA10123456784", "alertsEnabled": True, "carrierWebhookRegistered": True}
    data.update(overrides)
    return ShipmentCreate(**data)


class CaseDriver:
    """Walks a case forward through the happy path using the real services"""

    ORDER = [
        CaseState.CASE_CREATED,
        CaseState.VERIFYING,
        CaseState.VERIFIED_WITH_UNKNOWNS,
        CaseState.INSTALL_WINDOW_PROPOSED,
        CaseState.INSTALL_WINDOW_ACCEPTED,
        CaseState.DECISION_LOCKED,
        CaseState.VENDOR_AVAIL_CONFIRMED,
        CaseState.SHOP_WINDOW_CONFIRMED,
        CaseState.SHOP_APPOINTMENT_LOCKED,
        CaseState.SHIP_TRIGGERED,
        CaseState.IN_TRANSIT,
        CaseState.DELIVERED,
        CaseState.INSTALL_IN_PROGRESS,
        CaseState.INSTALLED,
        CaseState.POST_CONFIRMATION_COMPLETE,
    ]

    def __init__(self, db, user, vehicle, shop, vendor):
        self.db = db
        self.user = user
        self.vehicle = vehicle
        self.shop = shop
        self.vendor = vendor
        self.cases = CaseService(db)
        self.shipments = ShipmentService(db)
        self.vendors = VendorService(db)
        self.shipment = None

    def create(self):
        return self.cases.create_case(CaseCreate(vehicleId=self.vehicle.id, shopId=self.shop.id), self.user)

    def step(self, case):
        """Run the single operation that follows the case's current state"""
        state = case.state
        user = self.user
        if state == CaseState.CASE_CREATED:
            return self.cases.verify(case.id, VerifyRequest(), user)
        if state == CaseState.VERIFYING:
            return self.cases.verify(
                case.id, VerifyRequest(verified=True, diagnosticSummary="Worn front brakes"), user
            )
        if state == CaseState.VERIFIED_WITH_UNKNOWNS:
            _, case = self.cases.propose_install_window(
                case.id, InstallWindowProposal(startAt=WINDOW_START, endAt=WINDOW_END), user
            )
            return case
        if state == CaseState.INSTALL_WINDOW_PROPOSED:
            window_id = case.install_windows[-1].id
            return self.cases.accept_install_window(
                case.id, InstallWindowAcceptance(installWindowId=window_id), user
            )
        if state == CaseState.INSTALL_WINDOW_ACCEPTED:
            return self.cases.create_decision_lock(case.id, decision_lock_request(), user)
        if state == CaseState.DECISION_LOCKED:
            _, case = self.vendors.confirm_availability(self.availability(case.id), user)
            return case
        if state == CaseState.VENDOR_AVAIL_CONFIRMED:
            return self.cases.confirm_shop_window(case.id, user)
        if state == CaseState.SHOP_WINDOW_CONFIRMED:
            _, case = self.cases.lock_appointment(
                case.id, AppointmentLockRequest(slotStart=WINDOW_START, slotEnd=WINDOW_END), user
            )
            return case
        if state == CaseState.SHOP_APPOINTMENT_LOCKED:
            self.shipment = self.shipments.create_shipment(case.id, ready_shipment(), user)
            _, case = self.shipments.trigger(self.shipment.id, user)
            return case
        if state == CaseState.SHIP_TRIGGERED:
            _, case = self.shipments.set_in_transit(self.shipment.id, user)
            return case
        if state == CaseState.IN_TRANSIT:
            _, case = self.shipments.set_delivered(self.shipment.id, user)
            return case
        if state == CaseState.DELIVERED:
            return self.cases.start_install(case.id, user)
        if state == CaseState.INSTALL_IN_PROGRESS:
            return self.cases.complete_install(case.id, user)
        if state == CaseState.INSTALLED:
            return self.cases.post_confirmation(case.id, user)
        raise AssertionError(f"No forward step from {state}")

    def availability(self, case_id: str, **overrides) -> AvailabilityConfirm:
        data = {
            "caseId": case_id,
            "vendorId": self.vendor.id,
            "sku": "BRK-PAD-FR-4412",
            "quantity": 2,
            "available": True,
            "leadTimeMinDays": 1,
            "leadTimeMaxDays": 3,
            "validUntil": datetime(2025, 1, 31, 0, 0, 0),
        }
        data.update(overrides)
        return AvailabilityConfirm(**data)

    def advance_to(self, target: CaseState, case=None):
        case = case or self.create()
        while case.state != target:
            if self.ORDER.index(case.state) >= self.ORDER.index(target):
                raise AssertionError(f"{case.state} is already past {target}")
            case = self.step(case)
        return case


@pytest.fixture
def driver(db, user, vehicle, shop, vendor):
    return CaseDriver(db, user, vehicle, shop, vendor)
