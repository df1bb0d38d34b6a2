from datetime import date

from dues_invoicing.periods import due_date, period_label, target_renewal_date, to_epoch_millis


def test_day_zero_targets_last_day_of_month() -> None:
    assert target_renewal_date(date(2025, 2, 10)) == date(2025, 2, 28)
    assert target_renewal_date(date(2024, 2, 1)) == date(2024, 2, 29)


def test_month_offset_rolls_into_next_year() -> None:
    assert target_renewal_date(date(2025, 12, 15), month_offset=1) == date(2026, 1, 31)
    assert target_renewal_date(date(2025, 11, 3), month_offset=3, day_of_month=15) == date(2026, 2, 15)


def test_day_of_month_clamped_to_month_length() -> None:
    assert target_renewal_date(date(2025, 4, 2), day_of_month=31) == date(2025, 4, 30)


def test_epoch_millis_is_utc_midnight() -> None:
    assert to_epoch_millis(date(2025, 1, 31)) == 1738281600000


def test_due_date_and_period_label() -> None:
    assert due_date(date(2025, 1, 15), 30) == date(2025, 2, 14)
    assert period_label(date(2025, 3, 31)) == "2025-03"
