from dues_invoicing.territories import (
    CANADIAN_PROVINCE_CODES,
    US_STATE_CODES,
    billable_territories,
    count_billable,
    excluded_territories,
    normalize,
    split_territories,
)


def test_tables_cover_states_and_provinces() -> None:
    assert len(US_STATE_CODES) == 50
    assert len(CANADIAN_PROVINCE_CODES) == 13


def test_normalize_full_names_and_codes() -> None:
    assert normalize("California") == "CA"
    assert normalize("  new   york ") == "NY"
    assert normalize("british columbia") == "BC"
    assert normalize("ca") == "CA"
    assert normalize("Qc") == "QC"


def test_normalize_passes_unknown_values_through_trimmed() -> None:
    assert normalize("  Mexico ") == "Mexico"
    assert normalize("XX") == "XX"
    assert normalize("") == ""
    assert normalize(None) == ""


def test_split_territories_drops_blanks() -> None:
    assert split_territories("California; Nevada;;Arizona ;") == ["California", "Nevada", "Arizona"]
    assert split_territories(None) == []


def test_home_territory_excluded_after_normalization() -> None:
    assert count_billable("California;Nevada;Arizona", "California") == 2
    assert count_billable("CA;Nevada;Arizona", "california") == 2
    assert count_billable("california;NV", "CA") == 1


def test_every_home_occurrence_removed() -> None:
    raw_lists = ["California;Nevada", "Ontario", "CA;Germany"]

    assert billable_territories(raw_lists, "CA") == ["NV", "ON", "Germany"]
    assert excluded_territories(raw_lists, "CA") == ["CA", "CA"]


def test_unknown_home_territory_compared_case_insensitively() -> None:
    assert billable_territories(["Germany;GERMANY;France"], "germany") == ["France"]


def test_no_home_territory_bills_everything() -> None:
    assert count_billable("California;Nevada", "") == 2
    assert excluded_territories(["California"], None) == []
