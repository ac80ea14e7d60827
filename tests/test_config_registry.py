"""Tests for ConfigRegistryService and EffectiveConfigCache.

Precedence, tombstone inertness, version monotonicity, write validation,
cache round-trips and typed coercion. Uses InMemoryConfigRepository so the
chain semantics are exercised end to end without a database.
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from asc_governance.core.config_cache import EffectiveConfigCache
from asc_governance.core.enums import ConfigSource, ConfigValueType
from asc_governance.core.models import ConfigKey, PlatformConfigValue
from asc_governance.core.schemas import ActorContext, EffectiveConfig, SetConfigInput
from asc_governance.core.services import (
    ConfigRegistryService,
    coerce_config_value,
    positive_number,
    validate_config_value,
)
from asc_governance.errors import NotFoundError, ValidationError, VersionConflictError
from tests.conftest import BASE_TIME, InMemoryConfigRepository, MutableClock, make_config_key

LOANER = "feature.loaner_tracking.enabled"
TIMEOUT = "security.session.timeout_hours"
RETENTION = "phi.retention.billing_years"


def _make_service(
    repo: InMemoryConfigRepository | None = None,
    clock: MutableClock | None = None,
    ttl_seconds: float = 60.0,
) -> tuple[ConfigRegistryService, InMemoryConfigRepository]:
    """Construct a ConfigRegistryService over an in-memory repository.

    Returns:
        Tuple of (service, repository).
    """
    repo = repo or InMemoryConfigRepository(
        [
            make_config_key(LOANER),
            make_config_key(
                TIMEOUT,
                value_type="NUMBER",
                default_value="24",
                allow_facility_override=False,
                risk_class="MEDIUM",
            ),
            make_config_key(
                RETENTION,
                value_type="NUMBER",
                default_value="7",
                risk_class="HIGH",
            ),
        ]
    )
    service = ConfigRegistryService(
        config_repo=repo,
        cache=EffectiveConfigCache(ttl_seconds=ttl_seconds),
        clock=clock or MutableClock(),
    )
    return service, repo


class _HeldPlatformRead(InMemoryConfigRepository):
    """Holds the first platform read open until ``release`` is set."""

    def __init__(self, keys: list[ConfigKey]) -> None:
        super().__init__(keys)
        self.reading = asyncio.Event()
        self.release = asyncio.Event()

    async def get_current_platform_value(
        self,
        config_key_id: uuid.UUID,
        now: datetime,
    ) -> PlatformConfigValue | None:
        row = await super().get_current_platform_value(config_key_id, now)
        if not self.reading.is_set():
            self.reading.set()
            await self.release.wait()
        return row


# ---------------------------------------------------------------------------
# Resolution and precedence
# ---------------------------------------------------------------------------


class TestResolution:
    """Tests for facility-over-platform-over-fallback resolution."""

    @pytest.mark.asyncio()
    async def test_code_fallback_when_no_versions(self, facility_id: uuid.UUID) -> None:
        """A key with no platform value resolves to its default with CODE_FALLBACK."""
        service, _ = _make_service()

        result = await service.get_effective_config(LOANER, facility_id)

        assert result.value == "true"
        assert result.source == ConfigSource.CODE_FALLBACK
        assert result.platform_version is None
        assert result.facility_version is None

    @pytest.mark.asyncio()
    async def test_unknown_key_raises_not_found(self) -> None:
        """Resolving an unregistered key raises NotFoundError."""
        service, _ = _make_service()

        with pytest.raises(NotFoundError):
            await service.get_effective_config("no.such.key")

    @pytest.mark.asyncio()
    async def test_override_then_clear_round_trip(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """Override wins immediately; clearing falls back to the platform value."""
        service, _ = _make_service()

        await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)
        await service.set_facility_override(LOANER, facility_id, SetConfigInput(value="true"), actor)

        overridden = await service.get_effective_config(LOANER, facility_id)
        assert overridden.value == "true"
        assert overridden.source == ConfigSource.FACILITY

        await service.clear_facility_override(LOANER, facility_id, None, actor)

        cleared = await service.get_effective_config(LOANER, facility_id)
        assert cleared.value == "false"
        assert cleared.source == ConfigSource.PLATFORM

    @pytest.mark.asyncio()
    async def test_clear_without_platform_value_yields_code_fallback(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """Clearing with no platform version resolves to the code default."""
        service, _ = _make_service()

        await service.set_facility_override(LOANER, facility_id, SetConfigInput(value="false"), actor)
        await service.clear_facility_override(LOANER, facility_id, None, actor)

        result = await service.get_effective_config(LOANER, facility_id)
        assert result.value == "true"
        assert result.source == ConfigSource.CODE_FALLBACK

    @pytest.mark.asyncio()
    async def test_cleared_override_never_resurfaces(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """The tombstone is the highest version, so older override rows stay inert."""
        service, repo = _make_service()

        await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)
        await service.set_facility_override(LOANER, facility_id, SetConfigInput(value="true"), actor)
        await service.set_facility_override(LOANER, facility_id, SetConfigInput(value="true"), actor)
        await service.clear_facility_override(LOANER, facility_id, None, actor)
        service.invalidate()

        chain = sorted(repo.overrides, key=lambda r: r.version)
        assert [r.version for r in chain] == [1, 2, 3]
        assert chain[-1].cleared_at is not None

        for _ in range(3):
            result = await service.get_effective_config(LOANER, facility_id)
            assert result.source == ConfigSource.PLATFORM
            assert result.value == "false"
            service.invalidate()

    @pytest.mark.asyncio()
    async def test_override_after_clear_is_a_new_version(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """Writing again after a clear appends a new active version."""
        service, _ = _make_service()

        await service.set_facility_override(LOANER, facility_id, SetConfigInput(value="false"), actor)
        await service.clear_facility_override(LOANER, facility_id, None, actor)
        result = await service.set_facility_override(LOANER, facility_id, SetConfigInput(value="false"), actor)

        assert result.version == 3
        effective = await service.get_effective_config(LOANER, facility_id)
        assert effective.source == ConfigSource.FACILITY
        assert effective.facility_version == 3

    @pytest.mark.asyncio()
    async def test_override_ignored_for_other_facility(
        self,
        facility_id: uuid.UUID,
        other_facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """An override only applies to its own facility."""
        service, _ = _make_service()

        await service.set_facility_override(LOANER, facility_id, SetConfigInput(value="false"), actor)

        result = await service.get_effective_config(LOANER, other_facility_id)
        assert result.source == ConfigSource.CODE_FALLBACK

    @pytest.mark.asyncio()
    async def test_future_effective_at_not_selected_until_due(
        self,
        actor: ActorContext,
    ) -> None:
        """A version whose effective_at is in the future is not yet selected."""
        clock = MutableClock()
        service, _ = _make_service(clock=clock)

        await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)
        await service.set_platform_config(
            LOANER,
            SetConfigInput(value="true", effective_at=BASE_TIME + timedelta(hours=1)),
            actor,
        )

        now_value = await service.get_effective_config(LOANER)
        assert now_value.value == "false"
        assert now_value.platform_version == 1

        clock.advance(hours=2)
        service.invalidate()
        later = await service.get_effective_config(LOANER)
        assert later.value == "true"
        assert later.platform_version == 2


# ---------------------------------------------------------------------------
# Versioned writes and validation
# ---------------------------------------------------------------------------


class TestWrites:
    """Tests for versioned writes, audit rows and validation."""

    @pytest.mark.asyncio()
    async def test_sequential_writes_are_gapless(self, actor: ActorContext) -> None:
        """N writes produce versions 1..N and exactly N audit rows."""
        service, repo = _make_service()

        versions = []
        for i in range(5):
            result = await service.set_platform_config(
                RETENTION, SetConfigInput(value=str(7 + i), reason="policy update"), actor
            )
            versions.append(result.version)

        assert versions == [1, 2, 3, 4, 5]
        audit = await service.get_audit_log(key=RETENTION)
        assert len(audit) == 5
        assert sorted(e.version_after for e in audit) == [1, 2, 3, 4, 5]
        assert all(e.actor_name == actor.name for e in audit)

    @pytest.mark.asyncio()
    async def test_medium_risk_requires_reason(self, actor: ActorContext) -> None:
        """MEDIUM+ keys reject writes without a reason and write nothing."""
        service, repo = _make_service()

        with pytest.raises(ValidationError):
            await service.set_platform_config(TIMEOUT, SetConfigInput(value="12"), actor)
        with pytest.raises(ValidationError):
            await service.set_platform_config(TIMEOUT, SetConfigInput(value="12", reason="   "), actor)

        assert repo.platform == []
        assert repo.audit == []

    @pytest.mark.asyncio()
    async def test_non_overridable_key_rejects_facility_write(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """Facility overrides on platform-only keys are rejected before any write."""
        service, repo = _make_service()

        with pytest.raises(ValidationError) as exc_info:
            await service.set_facility_override(
                TIMEOUT, facility_id, SetConfigInput(value="12", reason="shift length"), actor
            )

        assert exc_info.value.details["field"] == "facility_id"
        assert repo.overrides == []

    @pytest.mark.asyncio()
    async def test_invalid_typed_value_rejected(self, actor: ActorContext) -> None:
        """A BOOLEAN key rejects values other than 'true' and 'false'."""
        service, repo = _make_service()

        with pytest.raises(ValidationError):
            await service.set_platform_config(LOANER, SetConfigInput(value="yes"), actor)
        assert repo.platform == []

    @pytest.mark.asyncio()
    async def test_deprecated_key_rejects_writes(self, actor: ActorContext) -> None:
        """Writes to a soft-deprecated key are rejected."""
        repo = InMemoryConfigRepository([make_config_key(LOANER, deprecated_at=BASE_TIME)])
        service, _ = _make_service(repo=repo)

        with pytest.raises(ValidationError):
            await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)

    @pytest.mark.asyncio()
    async def test_clear_without_active_override_is_noop(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """Clearing when nothing is overridden writes no version and no audit row."""
        service, repo = _make_service()

        assert await service.clear_facility_override(LOANER, facility_id, None, actor) is None
        assert repo.overrides == []
        assert repo.audit == []

    @pytest.mark.asyncio()
    async def test_clear_high_risk_requires_reason(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """Clearing an override of a HIGH risk key requires a reason."""
        service, _ = _make_service()
        await service.set_facility_override(
            RETENTION, facility_id, SetConfigInput(value="10", reason="state law"), actor
        )

        with pytest.raises(ValidationError):
            await service.clear_facility_override(RETENTION, facility_id, None, actor)

        result = await service.clear_facility_override(RETENTION, facility_id, "reverted", actor)
        assert result is not None
        assert result.version == 2

    @pytest.mark.asyncio()
    async def test_write_is_persisted_with_audit_row(
        self,
        actor: ActorContext,
        facility_id: uuid.UUID,
    ) -> None:
        """Each write reaches the store and returns an integer version."""
        service, repo = _make_service()

        platform = await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)
        override = await service.set_facility_override(
            LOANER, facility_id, SetConfigInput(value="true"), actor
        )
        cleared = await service.clear_facility_override(LOANER, facility_id, None, actor)

        assert (platform.version, override.version) == (1, 1)
        assert cleared is not None
        assert cleared.version == 2
        assert [r.value for r in repo.platform] == ["false"]
        assert len(repo.overrides) == 2
        assert len(repo.audit) == 3

    @pytest.mark.asyncio()
    async def test_version_conflict_is_retried(self, actor: ActorContext) -> None:
        """A lost version race is retried and the next attempt's version returned."""
        repo = AsyncMock()
        repo.get_key.return_value = make_config_key(LOANER)
        repo.write_platform_value.side_effect = [VersionConflictError("raced"), 4]
        service = ConfigRegistryService(config_repo=repo, cache=EffectiveConfigCache())

        result = await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)

        assert result.version == 4
        assert repo.write_platform_value.await_count == 2

    @pytest.mark.asyncio()
    async def test_version_conflict_exhausts_attempts(self, actor: ActorContext) -> None:
        """Persistent conflicts surface as VersionConflictError after three attempts."""
        repo = AsyncMock()
        repo.get_key.return_value = make_config_key(LOANER)
        repo.write_platform_value.side_effect = VersionConflictError("raced")
        service = ConfigRegistryService(config_repo=repo, cache=EffectiveConfigCache())

        with pytest.raises(VersionConflictError):
            await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)
        assert repo.write_platform_value.await_count == 3


# ---------------------------------------------------------------------------
# Cache behaviour
# ---------------------------------------------------------------------------


class TestCache:
    """Tests for cached resolution and write invalidation."""

    @pytest.mark.asyncio()
    async def test_second_read_served_from_cache(self, facility_id: uuid.UUID) -> None:
        """A repeated read within the TTL does not hit the repository."""
        service, repo = _make_service()

        first = await service.get_effective_config(LOANER, facility_id)
        second = await service.get_effective_config(LOANER, facility_id)

        assert first == second
        assert repo.get_key_calls == 1

    @pytest.mark.asyncio()
    async def test_cached_facility_hit_reports_true_source(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """A cached facility-scoped read keeps the source it was resolved with."""
        service, _ = _make_service()
        await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)

        await service.get_effective_config(LOANER, facility_id)
        cached = await service.get_effective_config(LOANER, facility_id)

        assert cached.source == ConfigSource.PLATFORM

    @pytest.mark.asyncio()
    async def test_platform_write_invalidates_facility_entries(
        self,
        facility_id: uuid.UUID,
        other_facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """A platform write is visible to every facility's next read."""
        service, _ = _make_service()
        await service.get_effective_config(LOANER, facility_id)
        await service.get_effective_config(LOANER, other_facility_id)
        await service.get_effective_config(LOANER)

        await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)

        for scope in (facility_id, other_facility_id, None):
            result = await service.get_effective_config(LOANER, scope)
            assert result.value == "false"

    @pytest.mark.asyncio()
    async def test_facility_write_visible_immediately(
        self,
        facility_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """No stale read after a local facility write."""
        service, _ = _make_service()
        assert (await service.get_effective_config(LOANER, facility_id)).value == "true"

        await service.set_facility_override(LOANER, facility_id, SetConfigInput(value="false"), actor)

        assert (await service.get_effective_config(LOANER, facility_id)).value == "false"

    @pytest.mark.asyncio()
    async def test_read_racing_a_write_is_not_cached(self, actor: ActorContext) -> None:
        """A read that started before a local write must not cache its older result."""
        repo = _HeldPlatformRead([make_config_key(LOANER)])
        service, _ = _make_service(repo)

        reader = asyncio.create_task(service.get_effective_config(LOANER))
        await repo.reading.wait()
        await service.set_platform_config(LOANER, SetConfigInput(value="false"), actor)
        repo.release.set()
        in_flight = await reader

        latest = await service.get_effective_config(LOANER)

        assert in_flight.source == ConfigSource.CODE_FALLBACK
        assert latest.source == ConfigSource.PLATFORM
        assert latest.value == "false"

    def test_put_skipped_after_invalidation(self) -> None:
        """A result resolved under an older generation is dropped."""
        cache = EffectiveConfigCache()
        value = EffectiveConfig(
            key=LOANER,
            value="true",
            value_type=ConfigValueType.BOOLEAN,
            source=ConfigSource.CODE_FALLBACK,
            risk_class="LOW",
            is_sensitive=False,
        )
        generation = cache.generation

        cache.invalidate(key=LOANER)

        assert cache.put(LOANER, None, value, generation=generation) is False
        assert cache.get(LOANER, None) is None
        assert cache.put(LOANER, None, value, generation=cache.generation) is True
        assert cache.get(LOANER, None) == value

    def test_entries_expire_after_ttl(self) -> None:
        """Entries older than the TTL are dropped on read."""
        now = [100.0]
        cache = EffectiveConfigCache(ttl_seconds=60, clock=lambda: now[0])
        value = EffectiveConfig(
            key=LOANER,
            value="true",
            value_type=ConfigValueType.BOOLEAN,
            source=ConfigSource.CODE_FALLBACK,
            risk_class="LOW",
            is_sensitive=False,
        )
        cache.put(LOANER, None, value)

        now[0] = 159.0
        assert cache.get(LOANER, None) == value
        now[0] = 160.0
        assert cache.get(LOANER, None) is None
        assert len(cache) == 0

    def test_invalidate_scopes(self, facility_id: uuid.UUID, other_facility_id: uuid.UUID) -> None:
        """invalidate() supports exact, per-key, per-facility and full clears."""
        cache = EffectiveConfigCache()
        value = EffectiveConfig(
            key=LOANER,
            value="true",
            value_type=ConfigValueType.BOOLEAN,
            source=ConfigSource.CODE_FALLBACK,
            risk_class="LOW",
            is_sensitive=False,
        )

        def fill() -> None:
            for key in (LOANER, TIMEOUT):
                for scope in (None, facility_id, other_facility_id):
                    cache.put(key, scope, value)

        fill()
        assert cache.invalidate(key=LOANER, facility_id=facility_id) == 1
        assert cache.get(LOANER, facility_id) is None
        assert cache.get(LOANER, other_facility_id) is not None

        fill()
        assert cache.invalidate(key=LOANER) == 3
        assert cache.get(TIMEOUT, None) is not None

        fill()
        assert cache.invalidate(facility_id=other_facility_id) == 2
        assert cache.get(LOANER, facility_id) is not None

        fill()
        assert cache.invalidate() == 6
        assert len(cache) == 0


# ---------------------------------------------------------------------------
# Typed accessor and value parsing
# ---------------------------------------------------------------------------


class TestTypedValues:
    """Tests for get_effective_config_value coercion and write-time parsing."""

    @pytest.mark.asyncio()
    async def test_number_and_boolean_coercion(self, facility_id: uuid.UUID) -> None:
        """NUMBER resolves to float and BOOLEAN to bool."""
        service, _ = _make_service()

        assert await service.get_effective_config_value(TIMEOUT) == 24.0
        assert await service.get_effective_config_value(LOANER, facility_id) is True

    def test_coerce_rules(self) -> None:
        """Coercion follows the declared value type with None on parse failure."""
        assert coerce_config_value("true", ConfigValueType.BOOLEAN) is True
        assert coerce_config_value("TRUE", ConfigValueType.BOOLEAN) is False
        assert coerce_config_value("2.5", ConfigValueType.NUMBER) == 2.5
        assert coerce_config_value("abc", ConfigValueType.NUMBER) is None
        assert coerce_config_value('{"a": [1]}', ConfigValueType.JSON) == {"a": [1]}
        assert coerce_config_value("{broken", ConfigValueType.JSON) is None
        assert coerce_config_value("raw", ConfigValueType.STRING) == "raw"
        assert coerce_config_value(None, ConfigValueType.NUMBER) is None

    def test_validate_rejects_non_finite_numbers(self) -> None:
        """NUMBER values must parse to a finite float."""
        validate_config_value("12.5", ConfigValueType.NUMBER)
        validate_config_value(None, ConfigValueType.NUMBER)
        for bad in ("nan", "inf", "twelve"):
            with pytest.raises(ValidationError):
                validate_config_value(bad, ConfigValueType.NUMBER)
        with pytest.raises(ValidationError):
            validate_config_value("[1,", ConfigValueType.JSON)

    def test_positive_number_fallback(self) -> None:
        """Tuning parameters fall back to the default unless finite and positive."""
        assert positive_number(20.0, 15) == 20.0
        assert positive_number("30", 15) == 30.0
        assert positive_number(0, 15) == 15
        assert positive_number(-3.0, 15) == 15
        assert positive_number(None, 15) == 15
        assert positive_number(True, 15) == 15
        assert positive_number({"x": 1}, 15) == 15

    @pytest.mark.asyncio()
    async def test_get_positive_number_unregistered_key(self) -> None:
        """An unregistered tuning key resolves to its default."""
        service, _ = _make_service()

        assert await service.get_positive_number("phi.audit.session_gap_minutes", None, 15) == 15

    @pytest.mark.asyncio()
    async def test_list_keys_hides_deprecated(self) -> None:
        """Deprecated keys are listed only on request."""
        repo = InMemoryConfigRepository(
            [make_config_key(LOANER), make_config_key("feature.old.enabled", deprecated_at=BASE_TIME)]
        )
        service, _ = _make_service(repo=repo)

        active = await service.list_config_keys()
        everything = await service.list_config_keys(include_deprecated=True)

        assert [k.key for k in active] == [LOANER]
        assert len(everything) == 2
