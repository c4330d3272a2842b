import pytest

from repairflow.errors import CaseValidationError, GateViolation, NotFoundError
from repairflow.models import Vendor
from repairflow.state_machine import CaseState


def test_confirm_creates_commitment_and_advances(driver):
    case = driver.advance_to(CaseState.DECISION_LOCKED)
    commitment, case = driver.vendors.confirm_availability(
        driver.availability(case.id, backorderRisk=True, serviceLevel="GROUND"), driver.user
    )
    assert case.state == CaseState.VENDOR_AVAIL_CONFIRMED
    assert commitment.vendor_id == driver.vendor.id
    assert commitment.quantity == 2
    assert commitment.backorder_risk is True
    assert commitment.service_level == "GROUND"
    assert [c.id for c in case.vendor_commitments] == [commitment.id]


def test_confirm_is_not_owner_scoped(driver, other_user):
    case = driver.advance_to(CaseState.DECISION_LOCKED)
    _, case = driver.vendors.confirm_availability(driver.availability(case.id), other_user)
    assert case.state == CaseState.VENDOR_AVAIL_CONFIRMED


def test_required_fields(driver):
    case = driver.advance_to(CaseState.DECISION_LOCKED)
    with pytest.raises(CaseValidationError, match="available \\(boolean\\)"):
        driver.vendors.confirm_availability(driver.availability(case.id, available=None), driver.user)
    with pytest.raises(CaseValidationError):
        driver.vendors.confirm_availability(driver.availability(case.id, validUntil=None), driver.user)


def test_lead_times_must_be_ordered(driver):
    case = driver.advance_to(CaseState.DECISION_LOCKED)
    with pytest.raises(CaseValidationError, match="leadTimeMinDays"):
        driver.vendors.confirm_availability(
            driver.availability(case.id, leadTimeMinDays=5, leadTimeMaxDays=2), driver.user
        )


def test_requires_decision_lock(driver):
    case = driver.advance_to(CaseState.INSTALL_WINDOW_ACCEPTED)
    with pytest.raises(GateViolation) as exc:
        driver.vendors.confirm_availability(driver.availability(case.id), driver.user)
    assert "DECISION_LOCKED" in exc.value.message
    assert 'Run "Lock decision" next.' in exc.value.message


def test_unknown_case_and_vendor(driver):
    with pytest.raises(NotFoundError, match="Case not found"):
        driver.vendors.confirm_availability(driver.availability("missing"), driver.user)

    case = driver.advance_to(CaseState.DECISION_LOCKED)
    with pytest.raises(NotFoundError, match="Vendor not found"):
        driver.vendors.confirm_availability(driver.availability(case.id, vendorId="missing"), driver.user)
    driver.db.expire_all()
    assert driver.cases.get_case(case.id, driver.user).state == CaseState.DECISION_LOCKED


def test_list_vendors_sorted_by_name(driver, db):
    db.add(Vendor(name="Axle Supply"))
    db.commit()
    assert [v.name for v in driver.vendors.list_vendors()] == ["Axle Supply", "Parts Direct"]
