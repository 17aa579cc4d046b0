from datetime import date, timedelta

import pytest

from utilities.database import db, ActivityLog, Equipment, utc_now
from utilities.equipment_registry import (
    CONDITION_STATUS_ADVISORY,
    clear_relabeling,
    create_category,
    create_equipment,
    list_categories,
    soft_delete_equipment,
    suggest_status,
    update_equipment,
)
from utilities.errors import (
    EquipmentCheckedOut,
    NotFoundError,
    StatusLockedByActiveLoan,
    ValidationError,
)
from utilities.transaction_engine import checkout_equipment


def _due():
    return (utc_now() + timedelta(days=7)).date().isoformat()


def test_create_single_unit_defaults(app, make_category, admin_user):
    cameras = make_category("Cameras")
    [unit] = create_equipment(
        {"name": "Sony A7 IV", "category_id": cameras.id, "purchase_date": "2024-02-01", "serial_number": "S123"},
        actor=admin_user.id,
    )

    assert unit.barcode == "CA-24-00001"
    assert unit.condition == "normal"
    assert unit.status == "available"
    assert unit.location == "studio"
    assert unit.needs_relabeling is False

    log = ActivityLog.query.filter_by(action="equipment_created", target_id=unit.id).one()
    assert log.meta["count"] == "1/1"


def test_create_multiple_units_gets_consecutive_suffixed_barcodes(app, make_category):
    mics = make_category("Microphones")
    units = create_equipment(
        {
            "name": "Shure SM7B",
            "category_id": mics.id,
            "purchase_date": "2023-09-12",
            "serial_numbers": ["SM7-0001", "SM7-0002", "SM7-0003"],
        },
        quantity=3,
    )

    assert [u.barcode for u in units] == ["MI-23-00001-0001", "MI-23-00002-0002", "MI-23-00003-0003"]
    assert ActivityLog.query.filter_by(action="equipment_created").count() == 3


def test_create_rejects_bad_input_per_field(app):
    with pytest.raises(ValidationError) as excinfo:
        create_equipment(
            {"name": "", "purchase_price": "-5", "condition": "sparkling", "category_id": 999},
            quantity=120,
        )
    errors = excinfo.value.errors
    assert set(errors) >= {"name", "purchase_price", "condition", "category_id", "quantity"}
    assert Equipment.query.count() == 0


def test_create_rejects_serial_count_mismatch_and_duplicates(app, make_equipment):
    make_equipment(serial_number="TAKEN-1")

    with pytest.raises(ValidationError) as excinfo:
        create_equipment({"name": "Tripod", "serial_numbers": ["A1"]}, quantity=2)
    assert "serial_numbers" in excinfo.value.errors

    with pytest.raises(ValidationError):
        create_equipment({"name": "Tripod", "serial_numbers": ["A1", "a1"]}, quantity=2)

    with pytest.raises(ValidationError):
        create_equipment({"name": "Tripod", "serial_number": "taken-1"})


def test_description_edit_keeps_barcode_and_flag(app, make_category):
    cameras = make_category("Cameras")
    [unit] = create_equipment({"name": "FX3", "category_id": cameras.id, "purchase_date": "2022-01-01"})
    original = unit.barcode

    result = update_equipment(unit.id, {"description": "Cinema body with cage"})

    assert result.relabeled is False
    assert result.equipment.barcode == original
    assert result.equipment.needs_relabeling is False
    assert result.changes == {"description": {"from": None, "to": "Cinema body with cage"}}


def test_category_change_relabels_and_flag_is_sticky(app, make_category):
    cameras = make_category("Cameras")
    lenses = make_category("Lenses")
    [unit] = create_equipment({"name": "Odd unit", "category_id": cameras.id, "purchase_date": "2024-03-01"})
    assert unit.barcode == "CA-24-00001"

    moved = update_equipment(unit.id, {"category_id": lenses.id})
    assert moved.relabeled is True
    assert moved.equipment.barcode == "LN-24-00001"
    assert moved.equipment.needs_relabeling is True
    assert moved.changes["barcode"] == {"from": "CA-24-00001", "to": "LN-24-00001"}

    back = update_equipment(unit.id, {"category_id": cameras.id})
    assert back.equipment.barcode == "CA-24-00001"
    assert back.equipment.needs_relabeling is True

    cleared = clear_relabeling(unit.id)
    assert cleared.needs_relabeling is False
    assert ActivityLog.query.filter_by(action="equipment_relabeled").count() == 1


def test_acquisition_date_change_relabels(app, make_category):
    lights = make_category("Lighting")
    [unit] = create_equipment({"name": "Aputure 600d", "category_id": lights.id})
    assert unit.barcode == "LG-00-00001"

    result = update_equipment(unit.id, {"purchase_date": "2021-11-30"})
    assert result.equipment.barcode == "LG-21-00001"
    assert result.equipment.needs_relabeling is True


def test_explicit_barcode_in_patch_skips_drift(app, make_category):
    cameras = make_category("Cameras")
    lenses = make_category("Lenses")
    [unit] = create_equipment({"name": "Body", "category_id": cameras.id, "purchase_date": "2024-01-01"})

    result = update_equipment(unit.id, {"category_id": lenses.id, "barcode": "LN-24-00500"})
    assert result.equipment.barcode == "LN-24-00500"
    assert result.relabeled is False
    assert result.equipment.needs_relabeling is False


def test_relabel_flag_is_not_editable(app, make_equipment):
    unit = make_equipment(needs_relabeling=True)
    with pytest.raises(ValidationError):
        update_equipment(unit.id, {"needs_relabeling": False})
    assert db.session.get(Equipment, unit.id).needs_relabeling is True


def test_status_locked_while_checked_out(app, make_equipment, borrower):
    unit = make_equipment()
    checkout_equipment([unit.id], borrower.id, _due(), "events")

    with pytest.raises(StatusLockedByActiveLoan):
        update_equipment(unit.id, {"status": "unavailable"})

    # Same status and other fields stay editable
    result = update_equipment(unit.id, {"status": "available", "notes": "Spare battery in bag"})
    assert result.equipment.notes == "Spare battery in bag"
    assert db.session.get(Equipment, unit.id).status == "available"


def test_status_change_allowed_when_idle(app, make_equipment):
    unit = make_equipment()
    result = update_equipment(unit.id, {"condition": "broken", "status": "unavailable"})
    assert result.equipment.status == "unavailable"
    assert result.equipment.condition == "broken"


def test_soft_delete(app, make_equipment, borrower):
    idle = make_equipment(name="Idle")
    busy = make_equipment(name="Busy")
    checkout_equipment(busy.id, borrower.id, _due(), "personal")

    with pytest.raises(EquipmentCheckedOut):
        soft_delete_equipment(busy.id)

    soft_delete_equipment(idle.id)
    assert db.session.get(Equipment, idle.id).is_active is False
    with pytest.raises(NotFoundError):
        update_equipment(idle.id, {"name": "Ghost"})


def test_soft_deleted_barcode_can_be_reused(app, make_equipment):
    old = make_equipment(barcode="CA-24-00001")
    soft_delete_equipment(old.id)

    [fresh] = create_equipment({"name": "Replacement", "barcode": "CA-24-00001"})
    assert fresh.barcode == "CA-24-00001"


def test_status_advisory_is_read_only():
    assert suggest_status("broken") == "unavailable"
    assert suggest_status("worn") == "needs_maintenance"
    assert suggest_status("Brand_New") == "available"
    assert suggest_status("mystery") is None
    assert CONDITION_STATUS_ADVISORY["out_of_commission"] == "unavailable"


def test_condition_change_does_not_apply_advice(app, make_equipment):
    unit = make_equipment()
    result = update_equipment(unit.id, {"condition": "worn"})
    assert result.equipment.status == "available"


def test_categories(app, make_equipment):
    category = create_category("Drones", color="#AABBCC")
    make_equipment(category_id=category.id)

    with pytest.raises(ValidationError):
        create_category("drones")
    with pytest.raises(ValidationError):
        create_category("Grip", color="blue")

    [entry] = list_categories()
    assert entry["name"] == "Drones"
    assert entry["equipment_count"] == 1
    assert entry["color"] == "#AABBCC"


def test_purchase_date_parsed_to_date(app):
    [unit] = create_equipment({"name": "Lens", "purchase_date": "2019-04-05", "purchase_price": "1299.99"})
    assert unit.purchase_date == date(2019, 4, 5)
    assert unit.to_dict()["purchase_price"] == pytest.approx(1299.99)


@pytest.mark.parametrize("field", ["condition", "status", "location"])
@pytest.mark.parametrize("blank", ["", "   ", None])
def test_required_choices_cannot_be_blanked(app, make_equipment, field, blank):
    unit = make_equipment(condition="functional", status="available", location="studio")

    with pytest.raises(ValidationError) as excinfo:
        update_equipment(unit.id, {field: blank})
    assert field in excinfo.value.errors

    db.session.expire_all()
    refreshed = db.session.get(Equipment, unit.id)
    assert (refreshed.condition, refreshed.status, refreshed.location) == ("functional", "available", "studio")


def test_blank_choice_reports_alongside_other_errors(app, make_equipment):
    unit = make_equipment()
    with pytest.raises(ValidationError) as excinfo:
        update_equipment(unit.id, {"location": "", "condition": "shiny"})
    assert set(excinfo.value.errors) == {"location", "condition"}
