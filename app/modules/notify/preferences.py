"""Preference evaluation.

For each recipient x channel the evaluator checks, in order:

1. Is the channel enabled for this principal and event code?
2. Is the recipient's address on the suppression list?
3. Is it quiet hours for the principal? (defers delivery, unless critical)

No preference record at any scope means enabled, immediate.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

import pytz

from infrastructure.logging import get_module_logger, redact_identifier
from modules.notify.domain import (
    BlockReason,
    EffectivePreference,
    Frequency,
    PreferenceCheckInput,
    PreferenceCheckResult,
    PreferenceScope,
    Priority,
    QuietHours,
    utc_now,
)
from modules.notify.persistence import (
    Directory,
    PreferenceRepository,
    SuppressionRepository,
)

logger = get_module_logger()

MINUTES_PER_DAY = 24 * 60


def _to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def is_in_quiet_hours(
    quiet_hours: Optional[QuietHours], now: datetime
) -> Tuple[bool, Optional[datetime]]:
    """Return (in_quiet_hours, ends_at) for an aware ``now``.

    The window is ``[start, end)`` in the quiet hours timezone and wraps
    across midnight when start > end. Any evaluation error (an unknown
    timezone, for one) is logged and treated as not in quiet hours.
    """
    if quiet_hours is None or not quiet_hours.enabled:
        return False, None

    try:
        local = now.astimezone(pytz.timezone(quiet_hours.timezone))
        now_minutes = local.hour * 60 + local.minute
        start = _to_minutes(quiet_hours.start)
        end = _to_minutes(quiet_hours.end)

        if start > end:
            in_quiet = now_minutes >= start or now_minutes < end
        else:
            in_quiet = start <= now_minutes < end
        if not in_quiet:
            return False, None

        if now_minutes < end:
            remaining = end - now_minutes
        else:
            remaining = MINUTES_PER_DAY - now_minutes + end
        return True, now + timedelta(minutes=remaining)
    except Exception as e:
        logger.warning(
            "quiet_hours_evaluation_failed",
            timezone=quiet_hours.timezone,
            error=str(e),
        )
        return False, None


class ScopedPreferenceResolver:
    """Resolves the effective preference through the scope hierarchy.

    user > org unit (in the principal's listed order) > tenant > default.
    The first scope with a matching record wins.
    """

    def __init__(self, preferences: PreferenceRepository, directory: Directory):
        self.preferences = preferences
        self.directory = directory

    def resolve_effective(
        self, tenant_id: str, principal_id: str, event_code: str, channel
    ) -> EffectivePreference:
        scopes: List[Tuple[PreferenceScope, str]] = [(PreferenceScope.USER, principal_id)]
        principal = self.directory.get_principal(tenant_id, principal_id)
        if principal is not None:
            scopes.extend(
                (PreferenceScope.ORG_UNIT, org_unit_id)
                for org_unit_id in principal.org_unit_ids
            )
        scopes.append((PreferenceScope.TENANT, tenant_id))

        for scope, scope_id in scopes:
            record = self.preferences.find(tenant_id, scope, scope_id, event_code, channel)
            if record is not None:
                return EffectivePreference(
                    is_enabled=record.is_enabled,
                    frequency=record.frequency,
                    quiet_hours=record.quiet_hours,
                    resolved_from=scope,
                )
        return EffectivePreference()


class PreferenceEvaluator:
    """Checks preferences, suppression and quiet hours for one delivery."""

    def __init__(
        self,
        preferences: PreferenceRepository,
        suppressions: SuppressionRepository,
        scoped_resolver: Optional[ScopedPreferenceResolver] = None,
        max_workers: int = 8,
        clock=utc_now,
    ):
        self.preferences = preferences
        self.suppressions = suppressions
        self.scoped_resolver = scoped_resolver
        self.max_workers = max_workers
        self.clock = clock

    def check(self, check_input: PreferenceCheckInput) -> PreferenceCheckResult:
        effective = self._resolve(check_input)
        log_context = {
            "principal_id": check_input.principal_id,
            "event_code": check_input.event_code,
            "channel": check_input.channel.value,
        }

        if not effective.is_enabled:
            logger.debug(
                "preference_disabled",
                resolved_from=effective.resolved_from.value,
                **log_context,
            )
            return PreferenceCheckResult(
                allowed=False,
                reason=BlockReason.PREFERENCE_DISABLED.value,
                frequency=effective.frequency,
                resolved_from=effective.resolved_from,
            )

        if self.suppressions.is_suppressed(
            check_input.tenant_id, check_input.channel, check_input.recipient_addr
        ):
            logger.debug(
                "recipient_suppressed",
                recipient=redact_identifier(check_input.recipient_addr),
                **log_context,
            )
            return PreferenceCheckResult(
                allowed=False,
                reason=BlockReason.SUPPRESSED.value,
                frequency=effective.frequency,
                resolved_from=effective.resolved_from,
            )

        if check_input.priority != Priority.CRITICAL:
            in_quiet, ends_at = is_in_quiet_hours(effective.quiet_hours, self.clock())
            if in_quiet:
                logger.debug(
                    "quiet_hours_deferred", ends_at=ends_at.isoformat(), **log_context
                )
                return PreferenceCheckResult(
                    allowed=True,
                    reason=BlockReason.QUIET_HOURS_DEFERRED.value,
                    defer_until=ends_at,
                    frequency=effective.frequency,
                    resolved_from=effective.resolved_from,
                )

        return PreferenceCheckResult(
            allowed=True,
            frequency=effective.frequency,
            resolved_from=effective.resolved_from,
        )

    def check_batch(
        self, inputs: Sequence[PreferenceCheckInput]
    ) -> List[PreferenceCheckResult]:
        """Evaluate inputs concurrently; results keep the input order.

        A check that raises is logged and returned as blocked so one bad
        recipient does not abort the batch.
        """
        if not inputs:
            return []
        workers = max(1, min(self.max_workers, len(inputs)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self._safe_check, inputs))

    def _safe_check(self, check_input: PreferenceCheckInput) -> PreferenceCheckResult:
        try:
            return self.check(check_input)
        except Exception as e:
            logger.error(
                "preference_check_failed",
                tenant_id=check_input.tenant_id,
                principal_id=check_input.principal_id,
                channel=check_input.channel.value,
                error=str(e),
                exc_info=True,
            )
            return PreferenceCheckResult(
                allowed=False, reason=BlockReason.PREFERENCE_CHECK_FAILED.value
            )

    def _resolve(self, check_input: PreferenceCheckInput) -> EffectivePreference:
        if self.scoped_resolver is not None:
            return self.scoped_resolver.resolve_effective(
                check_input.tenant_id,
                check_input.principal_id,
                check_input.event_code,
                check_input.channel,
            )

        is_enabled = self.preferences.is_enabled(
            check_input.tenant_id,
            check_input.principal_id,
            check_input.event_code,
            check_input.channel,
        )
        records = self.preferences.get_for_user_by_event(
            check_input.tenant_id, check_input.principal_id, check_input.event_code
        )
        channel_record = next(
            (r for r in records if r.channel == check_input.channel), None
        )
        return EffectivePreference(
            is_enabled=is_enabled,
            frequency=channel_record.frequency if channel_record else Frequency.IMMEDIATE,
            quiet_hours=channel_record.quiet_hours if channel_record else None,
            resolved_from=PreferenceScope.DEFAULT,
        )
