"""Unit tests for preference evaluation.

Tests cover:
- Quiet hours windows (plain, wrapping midnight, timezones)
- Scope resolution: user > org unit > tenant > default
- Check order: disabled, suppressed, quiet hours
- Critical priority bypassing quiet hours
- Batch checks and failure isolation
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from modules.notify.domain import (
    ChannelCode,
    Frequency,
    PreferenceCheckInput,
    PreferenceScope,
    Priority,
    QuietHours,
    SuppressionEntry,
)
from modules.notify.preferences import (
    PreferenceEvaluator,
    ScopedPreferenceResolver,
    is_in_quiet_hours,
)
from tests.factories.notify import TENANT_ID, make_preference

pytestmark = pytest.mark.unit

LATE_EVENING = datetime(2026, 3, 10, 23, 30, tzinfo=timezone.utc)
MIDDAY = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
NIGHT_QUIET_HOURS = {"enabled": True, "start": "22:00", "end": "07:00", "timezone": "UTC"}


def _input(principal_id="alice", channel=ChannelCode.EMAIL, **overrides):
    fields = {
        "tenant_id": TENANT_ID,
        "principal_id": principal_id,
        "event_code": "order_approved",
        "channel": channel,
        "recipient_addr": f"{principal_id}@example.com",
    }
    fields.update(overrides)
    return PreferenceCheckInput(**fields)


def _evaluator(stores, now=MIDDAY, scoped=True):
    resolver = ScopedPreferenceResolver(stores.preferences, stores.directory) if scoped else None
    return PreferenceEvaluator(
        stores.preferences,
        stores.suppressions,
        scoped_resolver=resolver,
        max_workers=2,
        clock=lambda: now,
    )


class TestIsInQuietHours:
    """Tests for is_in_quiet_hours()."""

    def test_disabled_or_missing(self):
        assert is_in_quiet_hours(None, LATE_EVENING) == (False, None)
        assert is_in_quiet_hours(QuietHours(enabled=False), LATE_EVENING) == (False, None)

    def test_wrapping_window_before_midnight(self):
        in_quiet, ends_at = is_in_quiet_hours(QuietHours(**NIGHT_QUIET_HOURS), LATE_EVENING)

        assert in_quiet
        assert ends_at == datetime(2026, 3, 11, 7, 0, tzinfo=timezone.utc)

    def test_wrapping_window_after_midnight(self):
        now = datetime(2026, 3, 11, 5, 15, tzinfo=timezone.utc)

        in_quiet, ends_at = is_in_quiet_hours(QuietHours(**NIGHT_QUIET_HOURS), now)

        assert in_quiet
        assert ends_at == datetime(2026, 3, 11, 7, 0, tzinfo=timezone.utc)

    def test_outside_window(self):
        assert is_in_quiet_hours(QuietHours(**NIGHT_QUIET_HOURS), MIDDAY) == (False, None)

    def test_end_is_exclusive(self):
        now = datetime(2026, 3, 11, 7, 0, tzinfo=timezone.utc)

        assert is_in_quiet_hours(QuietHours(**NIGHT_QUIET_HOURS), now)[0] is False

    def test_same_day_window(self):
        quiet_hours = QuietHours(enabled=True, start="12:00", end="13:30", timezone="UTC")

        in_quiet, ends_at = is_in_quiet_hours(quiet_hours, MIDDAY)

        assert in_quiet
        assert ends_at == datetime(2026, 3, 10, 13, 30, tzinfo=timezone.utc)

    def test_timezone_applied(self):
        # 23:30 UTC is 19:30 in Toronto (EDT after the March change)
        quiet_hours = QuietHours(
            enabled=True, start="22:00", end="07:00", timezone="America/Toronto"
        )

        assert is_in_quiet_hours(quiet_hours, LATE_EVENING) == (False, None)

    def test_unknown_timezone_fails_open(self):
        quiet_hours = QuietHours(enabled=True, start="00:00", end="23:59", timezone="Mars/Base")

        assert is_in_quiet_hours(quiet_hours, MIDDAY) == (False, None)

    def test_invalid_time_rejected(self):
        with pytest.raises(ValueError):
            QuietHours(start="25:00")


class TestScopedPreferenceResolver:
    """Tests for the scope hierarchy."""

    def test_default_when_nothing_stored(self, stores):
        resolver = ScopedPreferenceResolver(stores.preferences, stores.directory)

        effective = resolver.resolve_effective(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL
        )

        assert effective.is_enabled
        assert effective.frequency == Frequency.IMMEDIATE
        assert effective.resolved_from == PreferenceScope.DEFAULT

    def test_user_beats_org_unit_and_tenant(self, stores):
        stores.preferences.upsert(
            make_preference(PreferenceScope.TENANT, TENANT_ID, is_enabled=False)
        )
        stores.preferences.upsert(
            make_preference(
                PreferenceScope.ORG_UNIT, "finance", frequency=Frequency.DAILY_DIGEST
            )
        )
        stores.preferences.upsert(
            make_preference(
                PreferenceScope.USER,
                "alice",
                event_code="order_approved",
                channel=ChannelCode.EMAIL,
                frequency=Frequency.HOURLY_DIGEST,
            )
        )
        resolver = ScopedPreferenceResolver(stores.preferences, stores.directory)

        effective = resolver.resolve_effective(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL
        )

        assert effective.resolved_from == PreferenceScope.USER
        assert effective.frequency == Frequency.HOURLY_DIGEST

    def test_org_unit_applies_to_members_only(self, stores):
        stores.preferences.upsert(
            make_preference(
                PreferenceScope.ORG_UNIT, "finance", frequency=Frequency.DAILY_DIGEST
            )
        )
        resolver = ScopedPreferenceResolver(stores.preferences, stores.directory)

        alice = resolver.resolve_effective(TENANT_ID, "alice", "order_approved", ChannelCode.SMS)
        bob = resolver.resolve_effective(TENANT_ID, "bob", "order_approved", ChannelCode.SMS)

        assert alice.resolved_from == PreferenceScope.ORG_UNIT
        assert alice.frequency == Frequency.DAILY_DIGEST
        assert bob.resolved_from == PreferenceScope.DEFAULT

    def test_tenant_fallback(self, stores):
        stores.preferences.upsert(
            make_preference(PreferenceScope.TENANT, TENANT_ID, channel=ChannelCode.SMS, is_enabled=False)
        )
        resolver = ScopedPreferenceResolver(stores.preferences, stores.directory)

        effective = resolver.resolve_effective(TENANT_ID, "bob", "order_approved", ChannelCode.SMS)

        assert not effective.is_enabled
        assert effective.resolved_from == PreferenceScope.TENANT


class TestPreferenceEvaluator:
    """Tests for PreferenceEvaluator.check()."""

    def test_allowed_by_default(self, stores):
        result = _evaluator(stores).check(_input())

        assert result.allowed
        assert result.reason is None
        assert not result.is_deferred

    def test_disabled(self, stores):
        stores.preferences.upsert(make_preference(is_enabled=False))

        result = _evaluator(stores).check(_input())

        assert not result.allowed
        assert result.reason == "preference_disabled"

    def test_suppressed(self, stores):
        stores.suppressions.add(
            SuppressionEntry(
                tenant_id=TENANT_ID, channel=ChannelCode.EMAIL, address="Alice@Example.com "
            )
        )

        result = _evaluator(stores).check(_input())

        assert not result.allowed
        assert result.reason == "suppressed"

    def test_disabled_checked_before_suppression(self, stores):
        stores.preferences.upsert(make_preference(is_enabled=False))
        stores.suppressions.add(
            SuppressionEntry(
                tenant_id=TENANT_ID, channel=ChannelCode.EMAIL, address="alice@example.com"
            )
        )

        assert _evaluator(stores).check(_input()).reason == "preference_disabled"

    def test_quiet_hours_defer(self, stores):
        stores.preferences.upsert(make_preference(quiet_hours=NIGHT_QUIET_HOURS))

        result = _evaluator(stores, now=LATE_EVENING).check(_input())

        assert result.allowed
        assert result.is_deferred
        assert result.reason == "quiet_hours_deferred"
        assert result.defer_until == datetime(2026, 3, 11, 7, 0, tzinfo=timezone.utc)

    def test_critical_bypasses_quiet_hours(self, stores):
        stores.preferences.upsert(make_preference(quiet_hours=NIGHT_QUIET_HOURS))

        result = _evaluator(stores, now=LATE_EVENING).check(
            _input(priority=Priority.CRITICAL)
        )

        assert result.allowed
        assert not result.is_deferred

    def test_critical_does_not_bypass_suppression(self, stores):
        stores.suppressions.add(
            SuppressionEntry(
                tenant_id=TENANT_ID, channel=ChannelCode.EMAIL, address="alice@example.com"
            )
        )

        result = _evaluator(stores).check(_input(priority=Priority.CRITICAL))

        assert not result.allowed

    def test_frequency_reported(self, stores):
        stores.preferences.upsert(make_preference(frequency=Frequency.WEEKLY_DIGEST))

        result = _evaluator(stores).check(_input())

        assert result.allowed
        assert result.frequency == Frequency.WEEKLY_DIGEST

    def test_user_records_without_scoped_resolver(self, stores):
        stores.preferences.upsert(
            make_preference(
                channel=ChannelCode.EMAIL,
                frequency=Frequency.DAILY_DIGEST,
                quiet_hours=NIGHT_QUIET_HOURS,
            )
        )

        result = _evaluator(stores, now=LATE_EVENING, scoped=False).check(_input())

        assert result.frequency == Frequency.DAILY_DIGEST
        assert result.is_deferred
        assert result.resolved_from == PreferenceScope.DEFAULT


class TestCheckBatch:
    """Tests for PreferenceEvaluator.check_batch()."""

    def test_empty(self, stores):
        assert _evaluator(stores).check_batch([]) == []

    def test_keeps_input_order(self, stores):
        stores.preferences.upsert(make_preference(scope_id="bob", is_enabled=False))
        inputs = [_input("alice"), _input("bob"), _input("carol")]

        results = _evaluator(stores).check_batch(inputs)

        assert [r.allowed for r in results] == [True, False, True]

    def test_failing_check_is_blocked(self, stores):
        suppressions = MagicMock()
        suppressions.is_suppressed.side_effect = RuntimeError("store unavailable")
        evaluator = PreferenceEvaluator(stores.preferences, suppressions, max_workers=2)

        results = evaluator.check_batch([_input("alice"), _input("bob")])

        assert [r.allowed for r in results] == [False, False]
        assert results[0].reason == "preference_check_failed"
