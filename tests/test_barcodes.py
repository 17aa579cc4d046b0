from datetime import date, datetime

from utilities.barcode_utils import (
    BarcodeGenerator,
    barcode_generator,
    format_barcode,
    get_type_code,
    parse_barcode,
    serial_suffix,
    validate_barcode,
    year_code,
)


def test_type_code_lookup_and_default():
    assert get_type_code("Cameras") == "CA"
    assert get_type_code("  lenses ") == "LN"
    assert get_type_code("Video Lights") == "VL"
    assert get_type_code("Spaceships") == "MS"
    assert get_type_code(None) == "MS"
    assert get_type_code("") == "MS"


def test_year_code_handles_unknown_dates():
    assert year_code(date(2024, 5, 1)) == "24"
    assert year_code(datetime(2009, 1, 1, 12, 0)) == "09"
    assert year_code("2031-07-04") == "31"
    assert year_code(None) == "00"
    assert year_code("   ") == "00"
    assert year_code("last spring") == "00"


def test_serial_suffix_pads_and_strips():
    assert serial_suffix("sn-00a1b2") == "A1B2"
    assert serial_suffix("x9") == "00X9"
    assert serial_suffix("---") is None
    assert serial_suffix(None) is None


def test_parse_and_validate():
    assert validate_barcode("CA-24-00012")
    assert validate_barcode("LN-19-00003-A1B2")
    assert not validate_barcode("CA-2024-12")
    assert not validate_barcode("ca-24-00012")
    assert not validate_barcode(None)

    parsed = parse_barcode("LN-19-00003-A1B2")
    assert parsed == {"type_code": "LN", "year": "19", "sequence": 3, "serial_suffix": "A1B2"}
    assert parse_barcode("garbage") is None


def test_format_barcode():
    assert format_barcode("MI", "22", 7) == "MI-22-00007"
    assert format_barcode("MI", "22", 7, "0042") == "MI-22-00007-0042"


def test_next_sequence_ignores_inactive_units(app, make_equipment):
    make_equipment(barcode="CA-24-00001")
    make_equipment(barcode="CA-24-00004")
    make_equipment(barcode="CA-24-00009", is_active=False)
    make_equipment(barcode="LN-24-00020")

    assert barcode_generator.next_sequence("CA", "24") == 5
    assert barcode_generator.next_sequence("CA", "23") == 1


def test_generate_offsets_units_of_one_request(app, make_equipment):
    make_equipment(barcode="MI-23-00002")
    generator = BarcodeGenerator()

    codes = [
        generator.generate("Microphones", "2023-02-10", sequence_index=i, serial_number=sn, total_in_batch=3)
        for i, sn in enumerate(["AAA111", "BBB222", None], start=1)
    ]
    assert codes == ["MI-23-00003-A111", "MI-23-00004-B222", "MI-23-00005"]


def test_single_unit_never_gets_a_suffix(app):
    assert barcode_generator.generate("Lenses", date(2020, 1, 1), serial_number="XYZ123") == "LN-20-00001"


def test_rederive_keeps_sequence_when_free(app, make_equipment):
    unit = make_equipment(barcode="CA-24-00007")
    assert barcode_generator.rederive("CA-24-00007", "Cameras", "2024-06-01", exclude_id=unit.id) == "CA-24-00007"
    assert barcode_generator.rederive("CA-24-00007", "Lenses", "2024-06-01", exclude_id=unit.id) == "LN-24-00007"


def test_rederive_moves_to_next_free_sequence_on_collision(app, make_equipment):
    unit = make_equipment(barcode="CA-24-00007")
    make_equipment(barcode="LN-24-00007")
    make_equipment(barcode="LN-24-00011")

    assert barcode_generator.rederive(unit.barcode, "Lenses", "2024-01-01", exclude_id=unit.id) == "LN-24-00012"


def test_rederive_unparseable_barcode_generates_fresh(app, make_equipment):
    unit = make_equipment(barcode="LEGACY-42")
    assert barcode_generator.rederive(unit.barcode, "Drones", None, exclude_id=unit.id) == "DN-00-00001"
