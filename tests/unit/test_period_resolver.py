"""Unit-тесты для определения текущего периода."""

import pytest
from datetime import date

from core.config.workflow_config import build_catalog
from shared.models.workflow import ControllerMode, SessionState
from shared.services.period_resolver import PeriodResolver, business_status, period_window, resolve


OVERNIGHT_WORKFLOW = {
    "periods": [
        {"id": "day", "display_name": "白班", "start": "10:00", "end": "21:30"},
        {"id": "night", "display_name": "夜班", "start": "21:30", "end": "08:00"},
        {"id": "closing", "display_name": "闭店", "event_driven": True},
    ],
}


class TestResolve:
    """Тесты для resolve()."""

    def test_scenario_opening(self, scenario_catalog, at):
        """В 10:15 текущий период - открытие, следующий - обед."""
        resolution = resolve(scenario_catalog, at(10, 15))

        assert resolution.current.id == "opening"
        assert resolution.next.id == "lunch-service"

    def test_pure_function(self, scenario_catalog, at):
        """Повторный вызов с тем же моментом даёт тот же результат."""
        moment = at(12, 0)
        assert resolve(scenario_catalog, moment) == resolve(scenario_catalog, moment)

    def test_boundaries(self, scenario_catalog, at):
        """Начало периода включается, конец - нет."""
        assert resolve(scenario_catalog, at(10, 0)).current.id == "opening"
        assert resolve(scenario_catalog, at(10, 30)).current is None
        assert resolve(scenario_catalog, at(11, 30)).current.id == "lunch-service"
        assert resolve(scenario_catalog, at(14, 0)).current is None

    def test_gap_between_periods(self, scenario_catalog, at):
        resolution = resolve(scenario_catalog, at(11, 0))

        assert resolution.current is None
        assert resolution.next.id == "lunch-service"

    def test_event_driven_never_current(self, scenario_catalog, at):
        """Закрытие по времени не определяется никогда."""
        for hour in range(24):
            resolution = resolve(scenario_catalog, at(hour, 5))
            assert resolution.current is None or resolution.current.id != "closing"
            assert resolution.next is None or resolution.next.id != "closing"

    def test_next_wraps_to_tomorrow(self, scenario_catalog, at):
        """После обеда следующий период - открытие завтрашнего дня."""
        resolution = resolve(scenario_catalog, at(20, 0))

        assert resolution.current is None
        assert resolution.next.id == "opening"

    def test_at_most_one_current(self, default_catalog, at):
        """Ни в какой момент суток не бывает двух текущих периодов."""
        for minute in range(0, 24 * 60, 5):
            moment = at(minute // 60, minute % 60)
            matches = [
                period for period in default_catalog.time_bound_periods
                if any(
                    start <= moment < end
                    for start, end in (period_window(period, moment, -1), period_window(period, moment, 0))
                )
            ]
            assert len(matches) <= 1
            current = resolve(default_catalog, moment).current
            assert (current.id if current else None) == (matches[0].id if matches else None)


class TestCrossMidnight:
    """Тесты для периодов через полночь."""

    @pytest.fixture
    def catalog(self):
        return build_catalog(OVERNIGHT_WORKFLOW, reset_hour=10, closing_fallback_time=None)

    def test_before_midnight(self, catalog, at):
        assert resolve(catalog, at(23, 0)).current.id == "night"

    def test_after_midnight(self, catalog, at):
        """В 02:00 продолжается вчерашний ночной период."""
        resolution = resolve(catalog, at(2, 0, date(2024, 5, 2)))

        assert resolution.current.id == "night"
        assert resolution.next.id == "day"

    def test_after_overnight_end(self, catalog, at):
        assert resolve(catalog, at(10, 0, date(2024, 5, 2))).current.id == "day"
        assert resolve(catalog, at(9, 0, date(2024, 5, 2))).current is None

    def test_window(self, catalog, at):
        night = catalog.get("night")
        start, end = period_window(night, at(23, 0))

        assert start == at(21, 30)
        assert end == at(8, 0, date(2024, 5, 2))


class TestBusinessStatus:
    """Тесты для статуса работы ресторана."""

    def test_pre_opening(self, scenario_catalog, at):
        status = business_status(scenario_catalog, at(9, 0))

        assert status.status == "closed"
        assert status.message == "营业前 Pre-Opening"
        assert status.next_period.id == "opening"

    def test_opening(self, scenario_catalog, at):
        status = business_status(scenario_catalog, at(10, 5))

        assert status.status == "opening"
        assert status.message == "开店"

    def test_operating(self, scenario_catalog, at):
        status = business_status(scenario_catalog, at(12, 0))

        assert status.status == "operating"
        assert status.period.id == "lunch-service"

    def test_afternoon_break(self, scenario_catalog, at):
        status = business_status(scenario_catalog, at(10, 45))

        assert status.message == "午间休息 Afternoon Break"

    def test_after_service(self, scenario_catalog, at):
        status = business_status(scenario_catalog, at(20, 0))

        assert status.message == "已打烊 Closed"

    def test_manual_closing(self, scenario_catalog, at):
        state = SessionState(
            business_day=date(2024, 5, 1),
            mode=ControllerMode.MANUAL_CLOSING,
            current_period=scenario_catalog.closing,
        )
        status = business_status(scenario_catalog, at(21, 0), state)

        assert status.status == "closing"
        assert status.message == "闭店"

    def test_waiting_for_next_day(self, scenario_catalog, at):
        state = SessionState(business_day=date(2024, 5, 1), mode=ControllerMode.WAITING_FOR_NEXT_DAY)
        status = business_status(scenario_catalog, at(12, 0), state)

        assert status.status == "closed"
        assert status.next_period.id == "opening"

    def test_resolver_wrapper(self, scenario_catalog, at):
        resolver = PeriodResolver(scenario_catalog)

        assert resolver.current(at(10, 15)).id == "opening"
        assert resolver.next(at(10, 15)).id == "lunch-service"
        assert resolver.business_status(at(10, 15)).status == "opening"
