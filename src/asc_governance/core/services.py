"""Core business logic services for the access governance core.

Four service classes:
- ConfigRegistryService: Effective-config resolution, versioned writes, cache
- PhiAuditService: PHI access logging (fail-closed on DENIED, fail-open on ALLOWED) and queries
- AuditAnalyticsService: Session reconstruction, anomaly flags, denial bursts
- RetentionService: Advisory purge eligibility for surgical cases

All services are async-first. They accept injected repositories through their
constructors and contain no framework code. Tunable parameters (session gap,
denial threshold, retention windows) are read from the Configuration Registry
at query time, never from process settings.
"""

import asyncio
import json
import math
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from asc_governance.core.breach import build_breach_context
from asc_governance.core.config_cache import EffectiveConfigCache
from asc_governance.core.enums import (
    AccessOutcome,
    ConfigRiskClass,
    ConfigScope,
    ConfigSource,
    ConfigValueType,
)
from asc_governance.core.interfaces import (
    IAuditAnalyticsRepository,
    IConfigRepository,
    IPhiAccessAuditRepository,
    IRetentionRepository,
)
from asc_governance.core.models import ConfigKey, SurgicalCase
from asc_governance.core.retention import evaluate_retention, is_terminal_status
from asc_governance.core.schemas import (
    ActorContext,
    AuditAnalyticsSummary,
    AuditSessionFilters,
    AuditSessionPage,
    ConfigAuditLogResponse,
    ConfigKeyResponse,
    ConfigWriteResult,
    EffectiveConfig,
    ExcessiveDenialEntry,
    ExcessiveDenialFilters,
    PhiAccessContext,
    PhiAccessFilters,
    PhiAccessLogEntryResponse,
    PhiAccessLogPage,
    PhiAccessStats,
    RetentionEligibilityPage,
    RetentionPeriods,
    RetentionStatus,
    RetentionSummary,
    SetConfigInput,
)
from asc_governance.core.sessions import (
    flag_excessive_denials,
    paginate_sessions,
    rank_top_users,
    reconstruct_sessions,
)
from asc_governance.core.timeutil import add_years, day_bounds, ensure_utc
from asc_governance.errors import (
    AuditWriteError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from asc_governance.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Registry keys and their code-level defaults
# ---------------------------------------------------------------------------

SESSION_GAP_MINUTES_KEY = "phi.audit.session_gap_minutes"
EXCESSIVE_DENIAL_THRESHOLD_KEY = "phi.audit.excessive_denial_threshold"
BILLING_YEARS_KEY = "phi.retention.billing_years"
CLINICAL_YEARS_KEY = "phi.retention.clinical_years"
AUDIT_YEARS_KEY = "phi.retention.audit_years"

DEFAULT_SESSION_GAP_MINUTES = 15
DEFAULT_EXCESSIVE_DENIAL_THRESHOLD = 10
DEFAULT_RETENTION_YEARS = 7

TOP_USERS_LIMIT = 5

# Attempts for a config write that loses the (chain, version) race.
_VERSION_CONFLICT_ATTEMPTS = 3


# ---------------------------------------------------------------------------
# Value parsing
# ---------------------------------------------------------------------------


def validate_config_value(value: str | None, value_type: ConfigValueType) -> None:
    """Reject raw values that do not parse as the key's declared type.

    Raises:
        ValidationError: If the value does not parse.
    """
    if value is None or value_type == ConfigValueType.STRING:
        return
    if value_type == ConfigValueType.BOOLEAN:
        if value not in ("true", "false"):
            raise ValidationError("BOOLEAN values must be 'true' or 'false'", field="value")
    elif value_type == ConfigValueType.NUMBER:
        try:
            number = float(value)
        except ValueError:
            raise ValidationError(f"'{value}' is not a valid NUMBER", field="value") from None
        if not math.isfinite(number):
            raise ValidationError("NUMBER values must be finite", field="value")
    elif value_type == ConfigValueType.JSON:
        try:
            json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError("Value is not valid JSON", field="value") from None


def coerce_config_value(value: str | None, value_type: ConfigValueType) -> Any:
    """Convert a stored raw string to its typed form.

    BOOLEAN is true only for the exact string 'true'. Unparseable NUMBER or
    JSON values yield None.
    """
    if value is None:
        return None
    if value_type == ConfigValueType.BOOLEAN:
        return value == "true"
    if value_type == ConfigValueType.NUMBER:
        try:
            return float(value)
        except ValueError:
            return None
    if value_type == ConfigValueType.JSON:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def positive_number(value: Any, default: float) -> float:
    """Return ``value`` as a finite positive number, else ``default``."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number) or number <= 0:
        return default
    return number


# ---------------------------------------------------------------------------
# ConfigRegistryService
# ---------------------------------------------------------------------------


class ConfigRegistryService:
    """Versioned configuration with facility-over-platform-over-fallback precedence.

    Resolved results are cached per (key, facility) for the cache TTL. Writes
    invalidate after their transaction commits: a platform write drops every
    cached scope of the key, a facility write drops that facility's entry.

    Args:
        config_repo: Repository for the registry, version chains and audit log.
        cache: Process-local EffectiveConfigCache.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        config_repo: IConfigRepository,
        cache: EffectiveConfigCache,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize ConfigRegistryService.

        Args:
            config_repo: Config repository implementation.
            cache: Effective-config cache shared by all callers in this process.
            clock: Callable returning the current UTC datetime.
        """
        self._config_repo = config_repo
        self._cache = cache
        self._clock = clock

    async def _require_key(self, key: str) -> ConfigKey:
        config_key = await self._config_repo.get_key(key)
        if config_key is None:
            raise NotFoundError(resource="ConfigKey", resource_id=key)
        return config_key

    async def get_config_key(self, key: str) -> ConfigKeyResponse:
        """Return the registry definition of a key.

        Raises:
            NotFoundError: If the key is not registered.
        """
        return ConfigKeyResponse.model_validate(await self._require_key(key))

    async def list_config_keys(self, include_deprecated: bool = False) -> list[ConfigKeyResponse]:
        keys = await self._config_repo.list_keys(include_deprecated=include_deprecated)
        return [ConfigKeyResponse.model_validate(k) for k in keys]

    async def get_effective_config(
        self,
        key: str,
        facility_id: uuid.UUID | None = None,
    ) -> EffectiveConfig:
        """Resolve the value a caller observes for a key.

        Order: the key's code default (CODE_FALLBACK), then the selected
        platform version (PLATFORM), then, when ``facility_id`` is given and
        the key allows overrides, the selected facility version unless it is
        a cleared tombstone (FACILITY).

        Args:
            key: Registered config key.
            facility_id: Optional facility whose override applies.

        Returns:
            EffectiveConfig with the winning value, its source and versions.

        Raises:
            NotFoundError: If the key is not registered.
        """
        cached = self._cache.get(key, facility_id)
        if cached is not None:
            return cached
        generation = self._cache.generation

        config_key = await self._require_key(key)
        now = self._clock()

        value = config_key.default_value
        source = ConfigSource.CODE_FALLBACK
        platform_version: int | None = None
        facility_version: int | None = None

        platform = await self._config_repo.get_current_platform_value(config_key.id, now)
        if platform is not None:
            value = platform.value
            source = ConfigSource.PLATFORM
            platform_version = platform.version

        if facility_id is not None and config_key.allow_facility_override:
            override = await self._config_repo.get_current_facility_override(config_key.id, facility_id, now)
            if override is not None and override.cleared_at is None:
                value = override.override_value
                source = ConfigSource.FACILITY
                facility_version = override.version

        result = EffectiveConfig(
            key=config_key.key,
            value=value,
            value_type=ConfigValueType(config_key.value_type),
            source=source,
            platform_version=platform_version,
            facility_version=facility_version,
            risk_class=config_key.risk_class,
            is_sensitive=config_key.is_sensitive,
        )
        self._cache.put(key, facility_id, result, generation=generation)
        return result

    async def get_effective_config_value(
        self,
        key: str,
        facility_id: uuid.UUID | None = None,
    ) -> Any:
        """Resolve a key and coerce it per its value type."""
        effective = await self.get_effective_config(key, facility_id)
        return coerce_config_value(effective.value, effective.value_type)

    async def get_positive_number(
        self,
        key: str,
        facility_id: uuid.UUID | None,
        default: float,
    ) -> float:
        """Resolve a NUMBER key used as a tuning parameter.

        Unregistered keys, missing values and non-positive values all fall
        back to ``default``.
        """
        try:
            raw = await self.get_effective_config_value(key, facility_id)
        except NotFoundError:
            logger.warning("Config key not registered, using default", key=key, default=default)
            return default
        return positive_number(raw, default)

    @staticmethod
    def _require_reason(config_key: ConfigKey, reason: str | None) -> None:
        if ConfigRiskClass(config_key.risk_class).requires_reason and not (reason and reason.strip()):
            raise ValidationError(
                f"A reason is required for {config_key.risk_class} risk config changes",
                field="reason",
            )

    def _validate_write(self, config_key: ConfigKey, reason: str | None, value: str | None) -> None:
        if config_key.deprecated_at is not None:
            raise ValidationError(f"Config key {config_key.key} is deprecated", field="key")
        self._require_reason(config_key, reason)
        validate_config_value(value, ConfigValueType(config_key.value_type))

    @staticmethod
    def _require_overridable(config_key: ConfigKey) -> None:
        if not config_key.allow_facility_override:
            raise ValidationError(
                f"Config key {config_key.key} does not allow facility overrides",
                field="facility_id",
            )

    @staticmethod
    async def _retry_version_conflicts(write: Callable[[], Awaitable[T]]) -> T:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(VersionConflictError),
            stop=stop_after_attempt(_VERSION_CONFLICT_ATTEMPTS),
            wait=wait_random(0, 0.05),
            reraise=True,
        ):
            with attempt:
                return await write()
        raise AssertionError("unreachable")

    async def set_platform_config(
        self,
        key: str,
        data: SetConfigInput,
        actor: ActorContext,
    ) -> ConfigWriteResult:
        """Write the next platform version of a key.

        Args:
            key: Registered config key.
            data: New value, reason, note, optional effective time.
            actor: Identity of the caller.

        Returns:
            ConfigWriteResult with the new version.

        Raises:
            NotFoundError: If the key is not registered.
            ValidationError: Missing reason, deprecated key or unparseable value.
            TransientStoreError: The write failed and was rolled back.
        """
        config_key = await self._require_key(key)
        self._validate_write(config_key, data.reason, data.value)
        data = self._normalize_effective_at(data)

        version = await self._retry_version_conflicts(
            lambda: self._config_repo.write_platform_value(config_key, data, actor, self._clock())
        )
        self._cache.invalidate(key=key)

        return ConfigWriteResult(key=key, scope=ConfigScope.PLATFORM, version=version)

    async def set_facility_override(
        self,
        key: str,
        facility_id: uuid.UUID,
        data: SetConfigInput,
        actor: ActorContext,
    ) -> ConfigWriteResult:
        """Write the next facility override version of a key.

        Raises:
            NotFoundError: If the key is not registered.
            ValidationError: Key not overridable, missing reason, deprecated key
                or unparseable value.
            TransientStoreError: The write failed and was rolled back.
        """
        config_key = await self._require_key(key)
        self._require_overridable(config_key)
        self._validate_write(config_key, data.reason, data.value)
        data = self._normalize_effective_at(data)

        version = await self._retry_version_conflicts(
            lambda: self._config_repo.write_facility_override(
                config_key, facility_id, data, actor, self._clock()
            )
        )
        self._cache.invalidate(key=key, facility_id=facility_id)

        return ConfigWriteResult(
            key=key,
            scope=ConfigScope.FACILITY,
            facility_id=facility_id,
            version=version,
        )

    async def clear_facility_override(
        self,
        key: str,
        facility_id: uuid.UUID,
        reason: str | None,
        actor: ActorContext,
    ) -> ConfigWriteResult | None:
        """Clear a facility override so the platform value applies again.

        Returns:
            ConfigWriteResult for the tombstone version, or None when there was
            no active override (nothing written, no audit row).

        Raises:
            NotFoundError: If the key is not registered.
            ValidationError: Missing reason for a MEDIUM+ key.
        """
        config_key = await self._require_key(key)
        self._require_reason(config_key, reason)

        version = await self._retry_version_conflicts(
            lambda: self._config_repo.clear_facility_override(
                config_key, facility_id, reason, actor, self._clock()
            )
        )
        self._cache.invalidate(key=key, facility_id=facility_id)

        if version is None:
            logger.info("No active facility override to clear", key=key, facility_id=str(facility_id))
            return None
        return ConfigWriteResult(
            key=key,
            scope=ConfigScope.FACILITY,
            facility_id=facility_id,
            version=version,
        )

    @staticmethod
    def _normalize_effective_at(data: SetConfigInput) -> SetConfigInput:
        if data.effective_at is None:
            return data
        return data.model_copy(update={"effective_at": ensure_utc(data.effective_at)})

    async def get_audit_log(
        self,
        key: str | None = None,
        facility_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConfigAuditLogResponse]:
        entries = await self._config_repo.list_audit_log(
            key=key,
            facility_id=facility_id,
            limit=limit,
            offset=offset,
        )
        return [ConfigAuditLogResponse.model_validate(e) for e in entries]

    def invalidate(self, key: str | None = None, facility_id: uuid.UUID | None = None) -> int:
        """Drop cached results. See EffectiveConfigCache.invalidate for scoping."""
        removed = self._cache.invalidate(key=key, facility_id=facility_id)
        logger.debug(
            "Config cache invalidated",
            key=key,
            facility_id=str(facility_id) if facility_id else None,
            removed=removed,
        )
        return removed


# ---------------------------------------------------------------------------
# PhiAuditService
# ---------------------------------------------------------------------------


class PhiAuditService:
    """Records every PHI access decision and serves the access log.

    DENIED decisions are written before log_access() returns, retrying with
    exponential backoff; if every attempt fails AuditWriteError is raised and
    the caller must not return the denial. ALLOWED decisions are written by a
    background task whose failure is logged and swallowed.

    Args:
        audit_repo: Append-only access log repository.
        breach_hash_salt: HMAC key for breach_context hashes.
        denial_max_attempts: Attempts for a DENIED write before AuditWriteError.
        denial_retry_max_wait: Upper bound in seconds on the backoff between attempts.
    """

    def __init__(
        self,
        audit_repo: IPhiAccessAuditRepository,
        breach_hash_salt: str,
        denial_max_attempts: int = 3,
        denial_retry_max_wait: float = 1.0,
    ) -> None:
        """Initialize PhiAuditService.

        Args:
            audit_repo: Access log repository implementation.
            breach_hash_salt: Server-side HMAC key.
            denial_max_attempts: Write attempts for DENIED outcomes.
            denial_retry_max_wait: Max seconds between DENIED write attempts.
        """
        self._audit_repo = audit_repo
        self._breach_hash_salt = breach_hash_salt
        self._denial_max_attempts = max(1, denial_max_attempts)
        self._denial_retry_max_wait = denial_retry_max_wait
        self._pending: set[asyncio.Task[None]] = set()

    def _row_values(self, context: PhiAccessContext) -> dict[str, Any]:
        return {
            "user_id": context.user_id,
            "user_roles": list(context.user_roles),
            "facility_id": context.facility_id,
            "organization_ids": list(context.organization_ids),
            "case_id": context.case_id,
            "phi_classification": str(context.phi_classification),
            "access_purpose": str(context.access_purpose),
            "outcome": str(context.outcome),
            "denial_reason": context.denial_reason,
            "request_id": context.request_id,
            "endpoint": context.endpoint,
            "http_method": context.http_method,
            "is_emergency": context.is_emergency,
            "emergency_justification": context.emergency_justification,
            "breach_context": build_breach_context(
                context.ip_address,
                context.user_agent,
                context.endpoint,
                self._breach_hash_salt,
            ),
        }

    async def log_access(self, context: PhiAccessContext, wait: bool = False) -> uuid.UUID:
        """Record one access decision.

        Args:
            context: The decision and its request context.
            wait: For ALLOWED outcomes, await the write instead of scheduling
                it in the background (export flows that link an export row).
                Failures are still swallowed.

        Returns:
            The access log entry id.

        Raises:
            AuditWriteError: A DENIED decision could not be logged.
        """
        entry_id = uuid.uuid4()
        values = self._row_values(context)

        if context.outcome == AccessOutcome.DENIED:
            await self._append_denied(entry_id, values)
        elif wait:
            await self._append_best_effort(entry_id, values)
        else:
            task = asyncio.create_task(self._append_best_effort(entry_id, values))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return entry_id

    async def _append_denied(self, entry_id: uuid.UUID, values: dict[str, Any]) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._denial_max_attempts),
                wait=wait_exponential(multiplier=0.1, max=self._denial_retry_max_wait),
                reraise=True,
            ):
                with attempt:
                    await self._audit_repo.append(entry_id, values)
        except Exception as exc:
            logger.error(
                "DENIED PHI access could not be logged",
                entry_id=str(entry_id),
                facility_id=str(values["facility_id"]),
                user_id=str(values["user_id"]),
                attempts=self._denial_max_attempts,
                error=str(exc),
            )
            raise AuditWriteError(
                "Denied access could not be recorded",
                details={"entry_id": str(entry_id)},
            ) from exc

    async def _append_best_effort(self, entry_id: uuid.UUID, values: dict[str, Any]) -> None:
        try:
            await self._audit_repo.append(entry_id, values)
        except Exception as exc:
            logger.error(
                "ALLOWED PHI access log write failed",
                entry_id=str(entry_id),
                facility_id=str(values["facility_id"]),
                user_id=str(values["user_id"]),
                error=str(exc),
            )

    async def log_export(self, phi_access_log_id: uuid.UUID, export_format: str, row_count: int) -> None:
        """Link export metadata to an access row. Never raises."""
        try:
            await self._audit_repo.append_export(phi_access_log_id, export_format, row_count)
        except Exception as exc:
            logger.warning(
                "PHI export audit write failed",
                phi_access_log_id=str(phi_access_log_id),
                export_format=export_format,
                error=str(exc),
            )

    async def drain(self) -> None:
        """Wait for every scheduled background access-log write to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def get_phi_access_log(self, filters: PhiAccessFilters) -> PhiAccessLogPage:
        entries, total = await self._audit_repo.query(filters)
        return PhiAccessLogPage(
            entries=[PhiAccessLogEntryResponse.model_validate(e) for e in entries],
            total=total,
        )

    async def get_phi_access_log_entry(
        self,
        entry_id: uuid.UUID,
        facility_id: uuid.UUID,
    ) -> PhiAccessLogEntryResponse:
        """Fetch one row within the facility.

        Raises:
            NotFoundError: If missing or owned by another facility.
        """
        entry = await self._audit_repo.get_by_id(entry_id, facility_id)
        return PhiAccessLogEntryResponse.model_validate(entry)

    async def get_phi_access_stats(
        self,
        facility_id: uuid.UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> PhiAccessStats:
        start, end = day_bounds(start_date, end_date)
        stats = await self._audit_repo.get_stats(facility_id, start, end)
        return PhiAccessStats(**stats)


# ---------------------------------------------------------------------------
# AuditAnalyticsService
# ---------------------------------------------------------------------------


class AuditAnalyticsService:
    """Derived, never-persisted analytics over the PHI access log.

    Sessions are recomputed on every call from the current log contents.

    Args:
        analytics_repo: Read-only access log projections.
        config_service: Source of the session gap and denial threshold.
    """

    def __init__(
        self,
        analytics_repo: IAuditAnalyticsRepository,
        config_service: ConfigRegistryService,
    ) -> None:
        self._analytics_repo = analytics_repo
        self._config_service = config_service

    async def _session_gap_minutes(self, facility_id: uuid.UUID) -> float:
        return await self._config_service.get_positive_number(
            SESSION_GAP_MINUTES_KEY, facility_id, DEFAULT_SESSION_GAP_MINUTES
        )

    async def _denial_threshold(self, facility_id: uuid.UUID) -> int:
        return int(
            await self._config_service.get_positive_number(
                EXCESSIVE_DENIAL_THRESHOLD_KEY, facility_id, DEFAULT_EXCESSIVE_DENIAL_THRESHOLD
            )
        )

    async def get_audit_sessions(
        self,
        facility_id: uuid.UUID,
        filters: AuditSessionFilters,
    ) -> AuditSessionPage:
        """Reconstruct sessions for a facility, most recent first.

        Args:
            facility_id: Facility scope.
            filters: Optional user and day range, only_suspicious, paging.

        Returns:
            AuditSessionPage whose total counts the filtered set before paging.
        """
        gap_minutes = await self._session_gap_minutes(facility_id)
        start, end = day_bounds(filters.start_date, filters.end_date)
        events = await self._analytics_repo.list_access_events(facility_id, filters.user_id, start, end)

        sessions = reconstruct_sessions(events, gap_minutes)
        page, total = paginate_sessions(
            sessions,
            only_suspicious=filters.only_suspicious,
            limit=filters.limit,
            offset=filters.offset,
        )

        logger.info(
            "Audit sessions reconstructed",
            facility_id=str(facility_id),
            events=len(events),
            sessions=len(sessions),
            suspicious=sum(1 for s in sessions if s.is_suspicious),
        )
        return AuditSessionPage(sessions=page, total=total)

    async def get_excessive_denials(
        self,
        facility_id: uuid.UUID,
        filters: ExcessiveDenialFilters,
    ) -> list[ExcessiveDenialEntry]:
        """Hourly buckets where one user's denials exceed the threshold."""
        threshold = await self._denial_threshold(facility_id)
        start, end = day_bounds(filters.start_date, filters.end_date)
        buckets = await self._analytics_repo.list_denial_buckets(facility_id, start, end)
        return flag_excessive_denials(buckets, threshold, filters.limit)

    async def get_audit_analytics(
        self,
        facility_id: uuid.UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> AuditAnalyticsSummary:
        """Dashboard summary over sessions and denial buckets for a day range."""
        gap_minutes = await self._session_gap_minutes(facility_id)
        threshold = await self._denial_threshold(facility_id)
        start, end = day_bounds(start_date, end_date)

        events = await self._analytics_repo.list_access_events(facility_id, None, start, end)
        buckets = await self._analytics_repo.list_denial_buckets(facility_id, start, end)

        sessions = reconstruct_sessions(events, gap_minutes)
        flagged = [b for b in buckets if b.denial_count > threshold]

        return AuditAnalyticsSummary(
            total_sessions=len(sessions),
            suspicious_session_count=sum(1 for s in sessions if s.is_suspicious),
            excessive_denial_count=len(flagged),
            top_users=rank_top_users(sessions, TOP_USERS_LIMIT),
        )


# ---------------------------------------------------------------------------
# RetentionService
# ---------------------------------------------------------------------------


class RetentionService:
    """Advisory retention evaluation for surgical cases. Never deletes anything.

    Args:
        retention_repo: Case lifecycle and access-history queries.
        config_service: Source of the facility's retention windows.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        retention_repo: IRetentionRepository,
        config_service: ConfigRegistryService,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._retention_repo = retention_repo
        self._config_service = config_service
        self._clock = clock

    async def get_retention_periods(self, facility_id: uuid.UUID) -> RetentionPeriods:
        """Resolve billing/clinical/audit windows in whole years."""

        async def years(key: str) -> int:
            value = await self._config_service.get_positive_number(key, facility_id, DEFAULT_RETENTION_YEARS)
            whole = int(value)
            return whole if whole >= 1 else DEFAULT_RETENTION_YEARS

        return RetentionPeriods(
            billing_years=await years(BILLING_YEARS_KEY),
            clinical_years=await years(CLINICAL_YEARS_KEY),
            audit_years=await years(AUDIT_YEARS_KEY),
        )

    async def get_retention_status(self, case_id: uuid.UUID, facility_id: uuid.UUID) -> RetentionStatus:
        """Evaluate one case.

        Args:
            case_id: Surgical case UUID.
            facility_id: Facility scope.

        Returns:
            RetentionStatus for the case.

        Raises:
            NotFoundError: If the case does not exist in this facility.
        """
        case = await self._retention_repo.get_case(case_id, facility_id)
        if case is None:
            raise NotFoundError(resource="SurgicalCase", resource_id=str(case_id))

        periods = await self.get_retention_periods(facility_id)
        statuses = await self._evaluate_cases([case], facility_id, periods, self._clock())
        return statuses[0]

    async def _evaluate_cases(
        self,
        cases: list[SurgicalCase],
        facility_id: uuid.UUID,
        periods: RetentionPeriods,
        now: datetime,
    ) -> list[RetentionStatus]:
        terminal_ids = [c.id for c in cases if is_terminal_status(c.status)]
        terminal_times = await self._retention_repo.get_terminal_transition_times(terminal_ids)
        last_access = await self._retention_repo.get_last_access_times(terminal_ids, facility_id)

        statuses: list[RetentionStatus] = []
        for case in cases:
            status = evaluate_retention(
                case_id=case.id,
                facility_id=facility_id,
                status=case.status,
                terminal_at=terminal_times.get(case.id),
                last_access_at=last_access.get(case.id),
                periods=periods,
                now=now,
            )
            if status.terminal_event_missing:
                logger.warning(
                    "Terminal case has no terminal status event; retention measured from now",
                    case_id=str(case.id),
                    facility_id=str(facility_id),
                    status=case.status,
                )
            statuses.append(status)
        return statuses

    async def get_retention_summary(self, facility_id: uuid.UUID) -> RetentionSummary:
        """Set-based facility counts. An approximation for dashboards.

        Billing and clinical holds are approximated by the longer of the two
        windows measured from the terminal transition.
        """
        now = self._clock()
        periods = await self.get_retention_periods(facility_id)
        hold_years = max(periods.billing_years, periods.clinical_years)

        counts = await self._retention_repo.count_retention_summary(
            facility_id,
            terminal_cutoff=add_years(now, -hold_years),
            audit_cutoff=add_years(now, -periods.audit_years),
        )
        billing_hold = counts["terminal"] - counts["past_hold"]

        if counts["missing_terminal_event"]:
            logger.warning(
                "Terminal cases without terminal status events",
                facility_id=str(facility_id),
                count=counts["missing_terminal_event"],
            )

        return RetentionSummary(
            facility_id=facility_id,
            total_cases=counts["total"],
            active_cases=counts["active"],
            billing_hold_cases=billing_hold,
            audit_retention_cases=counts["audit_hold"],
            purgeable_cases=max(0, counts["past_hold"] - counts["audit_hold"]),
            missing_terminal_event_cases=counts["missing_terminal_event"],
            evaluated_at=now,
        )

    async def get_retention_eligibility(
        self,
        facility_id: uuid.UUID,
        only_purgeable: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> RetentionEligibilityPage:
        """Exact per-case evaluation, paginated.

        With ``only_purgeable`` every terminal case is evaluated before
        filtering, so the total reflects purgeable cases only.
        """
        now = self._clock()
        periods = await self.get_retention_periods(facility_id)

        if only_purgeable:
            cases, _ = await self._retention_repo.list_cases(facility_id, terminal_only=True, limit=None, offset=0)
            statuses = [
                s for s in await self._evaluate_cases(cases, facility_id, periods, now) if s.is_purgeable
            ]
            return RetentionEligibilityPage(cases=statuses[offset : offset + limit], total=len(statuses))

        cases, total = await self._retention_repo.list_cases(
            facility_id, terminal_only=False, limit=limit, offset=offset
        )
        statuses = await self._evaluate_cases(cases, facility_id, periods, now)
        return RetentionEligibilityPage(cases=statuses, total=total)
