from __future__ import annotations

import pytest

from cinerecon.adapters.rows import ROW_MODELS, snake_case
from cinerecon.domain.model import RecordKind


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("customerErrorDate", "customer_error_date"),
        ("Customer Error Date", "customer_error_date"),
        ("  RMA-Number ", "rma_number"),
        ("serial_number", "serial_number"),
    ],
)
def test_snake_case(header: str, expected: str) -> None:
    assert snake_case(header) == expected


def test_header_spellings_map_onto_canonical_fields() -> None:
    raw = (
        ROW_MODELS[RecordKind.AUDI]
        .model_validate(
            {
                "SiteName": "Suman City",
                "AudiNumber": "3",
                "unitSerial": "411034563",
                "unitModel": "CP2220",
            }
        )
        .to_raw()
    )

    assert raw["site_name"] == "Suman City"
    assert raw["audi_no"] == "3"
    assert raw["serial_number"] == "411034563"
    assert raw["model_no"] == "CP2220"
    assert raw["installation_date"] is None


def test_blank_cells_become_none() -> None:
    raw = ROW_MODELS[RecordKind.SITE].model_validate({"site_name": "   "}).to_raw()

    assert raw == {"site_name": None}


def test_inventory_rows_drop_unknown_columns() -> None:
    raw = ROW_MODELS[RecordKind.PROJECTOR_MODEL].model_validate(
        {"modelNo": "CP2220", "Lamp Hours": "1200"}
    ).to_raw()

    assert "lamp_hours" not in raw


def test_case_rows_carry_unknown_columns_in_snake_case() -> None:
    raw = ROW_MODELS[RecordKind.DTR].model_validate(
        {
            "caseNumber": "C1",
            "serialNumber": "411034563",
            "Problem Name": "No light output",
            "remarks": " ",
            "": "dangling",
        }
    ).to_raw()

    assert raw["case_number"] == "C1"
    assert raw["serial_number"] == "411034563"
    assert raw["problem_name"] == "No light output"
    assert raw["remarks"] is None
    assert "" not in raw


def test_non_string_values_are_left_alone() -> None:
    raw = ROW_MODELS[RecordKind.RMA].model_validate(
        {"callLogNumber": 694531, "rmaRaisedDate": 45000}
    ).to_raw()

    assert raw["call_log_number"] == 694531
    assert raw["rma_raised_date"] == 45000
