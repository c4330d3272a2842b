import pytest
from conftest import ready_shipment

from repairflow.domain.cases.schemas import CaseExceptionCreate
from repairflow.domain.shipments.schemas import CarrierExceptionWebhook, CustodyEventCreate, ShipmentUpdate
from repairflow.errors import CaseValidationError, GateViolation, NotFoundError
from repairflow.models_case import CaseException
from repairflow.state_machine import CaseState


@pytest.fixture
def locked_case(driver):
    return driver.advance_to(CaseState.SHOP_APPOINTMENT_LOCKED)


class TestCreateAndUpdate:
    def test_create_draft(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        assert shipment.state == "draft"
        assert shipment.tracking_number == "1Z999AA10123456784"

    def test_create_requires_locked_appointment(self, driver):
        case = driver.advance_to(CaseState.SHOP_WINDOW_CONFIRMED)
        with pytest.raises(GateViolation, match='Run "Lock appointment" next.'):
            driver.shipments.create_shipment(case.id, ready_shipment(), driver.user)

    def test_update_flips_trigger_gate(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(
            locked_case.id, ready_shipment(carrierWebhookRegistered=False), driver.user
        )
        with pytest.raises(GateViolation, match="carrier webhook is not registered"):
            driver.shipments.trigger(shipment.id, driver.user)

        driver.shipments.update_shipment(shipment.id, ShipmentUpdate(carrierWebhookRegistered=True), driver.user)
        shipment, case = driver.shipments.trigger(shipment.id, driver.user)
        assert shipment.state == "SHIP_TRIGGERED"
        assert case.state == CaseState.SHIP_TRIGGERED

    def test_update_leaves_unset_fields_alone(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        shipment = driver.shipments.update_shipment(shipment.id, ShipmentUpdate(alertsEnabled=False), driver.user)
        assert shipment.alerts_enabled is False
        assert shipment.tracking_number == "1Z999AA10123456784"
        assert shipment.carrier_webhook_registered is True

    def test_only_drafts_can_be_edited(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        driver.shipments.trigger(shipment.id, driver.user)
        with pytest.raises(CaseValidationError, match="Only draft shipments"):
            driver.shipments.update_shipment(shipment.id, ShipmentUpdate(trackingNumber="NEW"), driver.user)

    def test_foreign_shipment_is_not_found(self, driver, locked_case, other_user):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        with pytest.raises(NotFoundError):
            driver.shipments.trigger(shipment.id, other_user)


class TestShippingPhase:
    def test_single_shipment_walks_the_case(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        shipment, case = driver.shipments.trigger(shipment.id, driver.user)
        assert case.state == CaseState.SHIP_TRIGGERED
        shipment, case = driver.shipments.set_in_transit(shipment.id, driver.user)
        assert (shipment.state, case.state) == ("IN_TRANSIT", CaseState.IN_TRANSIT)
        shipment, case = driver.shipments.set_delivered(shipment.id, driver.user)
        assert (shipment.state, case.state) == ("DELIVERED", CaseState.DELIVERED)

    def test_in_transit_requires_trigger(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        with pytest.raises(GateViolation, match='Run "Trigger shipment" first.'):
            driver.shipments.set_in_transit(shipment.id, driver.user)

    def test_delivered_requires_in_transit(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        driver.shipments.trigger(shipment.id, driver.user)
        with pytest.raises(GateViolation, match='Run "Shipment in transit" first.'):
            driver.shipments.set_delivered(shipment.id, driver.user)

    def test_second_draft_cannot_trigger_once_case_moved(self, driver, locked_case):
        first = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        second = driver.shipments.create_shipment(
            locked_case.id, ready_shipment(trackingNumber="1Z999AA10123456785"), driver.user
        )

        _, case = driver.shipments.trigger(first.id, driver.user)
        assert case.state == CaseState.SHIP_TRIGGERED
        with pytest.raises(GateViolation, match="once the shop appointment is locked") as exc:
            driver.shipments.trigger(second.id, driver.user)
        assert exc.value.current_state == "SHIP_TRIGGERED"

        _, case = driver.shipments.set_in_transit(first.id, driver.user)
        assert case.state == CaseState.IN_TRANSIT
        with pytest.raises(GateViolation, match="once the shop appointment is locked") as exc:
            driver.shipments.trigger(second.id, driver.user)
        assert exc.value.current_state == "IN_TRANSIT"

        second = driver.shipments.get_shipment(second.id, driver.user)
        assert second.state == "draft"

    def test_untriggered_draft_blocks_install(self, driver, locked_case):
        first = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        driver.shipments.create_shipment(
            locked_case.id, ready_shipment(trackingNumber="1Z999AA10123456785"), driver.user
        )
        driver.shipments.trigger(first.id, driver.user)
        driver.shipments.set_in_transit(first.id, driver.user)
        _, case = driver.shipments.set_delivered(first.id, driver.user)
        assert case.state == CaseState.DELIVERED

        with pytest.raises(GateViolation, match="1 shipment\\(s\\) not yet delivered"):
            driver.cases.start_install(case.id, driver.user)

    def test_delivery_does_not_leave_an_exception_state(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        driver.shipments.trigger(shipment.id, driver.user)
        driver.shipments.set_in_transit(shipment.id, driver.user)
        driver.cases.create_exception(locked_case.id, CaseExceptionCreate(type="DAMAGED"), driver.user)

        shipment, case = driver.shipments.set_delivered(shipment.id, driver.user)
        assert shipment.state == "DELIVERED"
        assert case.state == CaseState.EXCEPTION_DAMAGED

    def test_trigger_refused_in_exception_state(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        driver.cases.create_exception(locked_case.id, CaseExceptionCreate(type="APPT_MOVED"), driver.user)
        with pytest.raises(GateViolation, match="triaged by support"):
            driver.shipments.trigger(shipment.id, driver.user)


class TestCustody:
    def test_custody_events_are_appended(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        driver.shipments.add_custody_event(
            shipment.id, CustodyEventCreate(custody="SUPPLIER_CUSTODY", proofRef="pick-123"), driver.user
        )
        event = driver.shipments.add_custody_event(
            shipment.id,
            CustodyEventCreate(custody="CARRIER_CUSTODY", declaredValue=180.0, insuranceRef="INS-9"),
            driver.user,
        )
        assert event.case_id == locked_case.id
        shipment = driver.shipments.get_shipment(shipment.id, driver.user)
        assert [e.custody for e in shipment.custody_events] == ["SUPPLIER_CUSTODY", "CARRIER_CUSTODY"]
        assert shipment.state == "draft"

    def test_unknown_custody_type(self, driver, locked_case):
        shipment = driver.shipments.create_shipment(locked_case.id, ready_shipment(), driver.user)
        with pytest.raises(CaseValidationError, match="custody must be one of"):
            driver.shipments.add_custody_event(shipment.id, CustodyEventCreate(custody="TELEPORTED"), driver.user)


class TestCarrierException:
    def in_transit_shipment(self, driver, case):
        shipment = driver.shipments.create_shipment(case.id, ready_shipment(), driver.user)
        driver.shipments.trigger(shipment.id, driver.user)
        driver.shipments.set_in_transit(shipment.id, driver.user)
        return shipment

    def test_records_exception_by_tracking_number(self, driver, locked_case):
        self.in_transit_shipment(driver, locked_case)
        exception = driver.shipments.record_carrier_exception(
            CarrierExceptionWebhook(trackingNumber="1Z999AA10123456784", eventId="evt-1", event="DELAYED")
        )
        assert exception.type == "CARRIER_EXCEPTION"
        assert exception.payload["event"] == "DELAYED"
        assert exception.payload["receivedAt"].endswith("Z")
        case = driver.cases.get_case(locked_case.id, driver.user)
        assert case.state == CaseState.EXCEPTION_CARRIER_EXCEPTION

    def test_replayed_event_is_recorded_once(self, driver, locked_case, db):
        shipment = self.in_transit_shipment(driver, locked_case)
        webhook = CarrierExceptionWebhook(shipmentId=shipment.id, eventId="evt-2", event="LOST")
        assert driver.shipments.record_carrier_exception(webhook) is not None
        assert driver.shipments.record_carrier_exception(webhook) is None
        db.expire_all()
        assert db.query(CaseException).count() == 1

    def test_unknown_shipment_releases_the_event_id(self, driver, locked_case):
        shipment = self.in_transit_shipment(driver, locked_case)
        with pytest.raises(NotFoundError):
            driver.shipments.record_carrier_exception(
                CarrierExceptionWebhook(shipmentId="missing", eventId="evt-3", event="LOST")
            )
        exception = driver.shipments.record_carrier_exception(
            CarrierExceptionWebhook(shipmentId=shipment.id, eventId="evt-3", event="LOST")
        )
        assert exception is not None

    def test_needs_a_shipment_reference(self, driver):
        with pytest.raises(CaseValidationError):
            driver.shipments.record_carrier_exception(CarrierExceptionWebhook(eventId="evt-4"))
