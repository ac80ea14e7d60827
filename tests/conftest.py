"""Test fixtures for asc-governance-core.

Provides:
- facility_id / other_facility_id / actor_id: deterministic UUIDs
- actor: an ActorContext for config writes
- MutableClock: a settable UTC clock for services and caches
- InMemoryConfigRepository: a dict-backed IConfigRepository for service tests
- make_config_key / make_event / make_case: ORM and schema builders
- make_session_factory: an async_sessionmaker stand-in for adapter tests
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from asc_governance.core.enums import (
    AccessOutcome,
    AccessPurpose,
    ConfigAuditAction,
    ConfigScope,
    PhiClassification,
)
from asc_governance.core.models import (
    ConfigAuditLogEntry,
    ConfigKey,
    FacilityConfigOverride,
    PlatformConfigValue,
    SurgicalCase,
)
from asc_governance.core.schemas import AccessEvent, ActorContext, SetConfigInput

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.fixture()
def facility_id() -> uuid.UUID:
    """Return a fixed facility UUID for consistent test assertions."""
    return uuid.UUID("00000000-0000-0000-0000-0000000000f1")


@pytest.fixture()
def other_facility_id() -> uuid.UUID:
    """Return a second facility UUID used for isolation checks."""
    return uuid.UUID("00000000-0000-0000-0000-0000000000f2")


@pytest.fixture()
def actor_id() -> uuid.UUID:
    """Return a fixed actor UUID for consistent test assertions."""
    return uuid.UUID("00000000-0000-0000-0000-000000000002")


@pytest.fixture()
def actor(actor_id: uuid.UUID) -> ActorContext:
    """Create an ActorContext for config writes.

    Args:
        actor_id: Injected actor UUID fixture.

    Returns:
        ActorContext with deterministic identity and request metadata.
    """
    return ActorContext(
        user_id=actor_id,
        name="Pat Admin",
        roles=["PLATFORM_ADMIN"],
        request_id="req-123",
        ip_address="10.0.0.7",
        user_agent="pytest",
    )


class MutableClock:
    """Settable UTC clock; call it to read the current time."""

    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def clock() -> MutableClock:
    """Return a clock fixed at BASE_TIME."""
    return MutableClock()


def make_config_key(
    key: str = "feature.loaner_tracking.enabled",
    value_type: str = "BOOLEAN",
    default_value: str | None = "true",
    allow_facility_override: bool = True,
    risk_class: str = "LOW",
    is_sensitive: bool = False,
    deprecated_at: datetime | None = None,
) -> ConfigKey:
    """Create a transient ConfigKey row with every column populated."""
    return ConfigKey(
        id=uuid.uuid4(),
        key=key,
        value_type=value_type,
        default_value=default_value,
        allow_facility_override=allow_facility_override,
        risk_class=risk_class,
        display_name=key,
        description=None,
        category="features",
        is_sensitive=is_sensitive,
        deprecated_at=deprecated_at,
        created_at=BASE_TIME,
    )


class InMemoryConfigRepository:
    """Dict-backed IConfigRepository with the same chain semantics as ConfigRepository."""

    def __init__(self, keys: list[ConfigKey]) -> None:
        self.keys = {k.key: k for k in keys}
        self.platform: list[PlatformConfigValue] = []
        self.overrides: list[FacilityConfigOverride] = []
        self.audit: list[ConfigAuditLogEntry] = []
        self.get_key_calls = 0

    async def get_key(self, key: str) -> ConfigKey | None:
        self.get_key_calls += 1
        return self.keys.get(key)

    async def list_keys(self, include_deprecated: bool = False) -> list[ConfigKey]:
        keys = sorted(self.keys.values(), key=lambda k: (k.category, k.key))
        return [k for k in keys if include_deprecated or k.deprecated_at is None]

    async def get_current_platform_value(self, config_key_id: uuid.UUID, now: datetime) -> PlatformConfigValue | None:
        rows = [r for r in self.platform if r.config_key_id == config_key_id and r.effective_at <= now]
        return max(rows, key=lambda r: (r.version, r.effective_at), default=None)

    async def get_current_facility_override(
        self,
        config_key_id: uuid.UUID,
        facility_id: uuid.UUID,
        now: datetime,
    ) -> FacilityConfigOverride | None:
        rows = [
            r
            for r in self._chain(config_key_id, facility_id)
            if r.effective_at <= now
        ]
        return max(rows, key=lambda r: (r.version, r.effective_at), default=None)

    def _chain(self, config_key_id: uuid.UUID, facility_id: uuid.UUID) -> list[FacilityConfigOverride]:
        return [r for r in self.overrides if r.config_key_id == config_key_id and r.facility_id == facility_id]

    def _audit(self, config_key: ConfigKey, **fields: Any) -> None:
        self.audit.append(
            ConfigAuditLogEntry(
                id=uuid.uuid4(),
                config_key=config_key.key,
                actor_roles=[],
                created_at=BASE_TIME,
                **fields,
            )
        )

    async def write_platform_value(
        self,
        config_key: ConfigKey,
        data: SetConfigInput,
        actor: ActorContext,
        now: datetime,
    ) -> int:
        chain = [r for r in self.platform if r.config_key_id == config_key.id]
        latest = max(chain, key=lambda r: r.version, default=None)
        version = (latest.version if latest else 0) + 1
        self.platform.append(
            PlatformConfigValue(
                id=uuid.uuid4(),
                config_key_id=config_key.id,
                version=version,
                value=data.value,
                changed_by_user_id=actor.user_id,
                change_reason=data.reason,
                change_note=data.note,
                effective_at=data.effective_at or now,
            )
        )
        self._audit(
            config_key,
            scope=str(ConfigScope.PLATFORM),
            facility_id=None,
            action=str(ConfigAuditAction.SET),
            old_value=latest.value if latest else None,
            new_value=data.value,
            version_before=latest.version if latest else None,
            version_after=version,
            change_reason=data.reason,
            change_note=data.note,
            actor_user_id=actor.user_id,
            actor_name=actor.name,
            request_id=actor.request_id,
        )
        return version

    async def write_facility_override(
        self,
        config_key: ConfigKey,
        facility_id: uuid.UUID,
        data: SetConfigInput,
        actor: ActorContext,
        now: datetime,
    ) -> int:
        latest = max(self._chain(config_key.id, facility_id), key=lambda r: r.version, default=None)
        version = (latest.version if latest else 0) + 1
        self.overrides.append(
            FacilityConfigOverride(
                id=uuid.uuid4(),
                facility_id=facility_id,
                config_key_id=config_key.id,
                version=version,
                override_value=data.value,
                changed_by_user_id=actor.user_id,
                change_reason=data.reason,
                change_note=data.note,
                effective_at=data.effective_at or now,
                cleared_at=None,
            )
        )
        self._audit(
            config_key,
            scope=str(ConfigScope.FACILITY),
            facility_id=facility_id,
            action=str(ConfigAuditAction.SET),
            old_value=None,
            new_value=data.value,
            version_before=latest.version if latest else None,
            version_after=version,
            change_reason=data.reason,
            change_note=data.note,
            actor_user_id=actor.user_id,
            actor_name=actor.name,
            request_id=actor.request_id,
        )
        return version

    async def clear_facility_override(
        self,
        config_key: ConfigKey,
        facility_id: uuid.UUID,
        reason: str | None,
        actor: ActorContext,
        now: datetime,
    ) -> int | None:
        latest = max(self._chain(config_key.id, facility_id), key=lambda r: r.version, default=None)
        if latest is None or latest.cleared_at is not None:
            return None
        version = latest.version + 1
        self.overrides.append(
            FacilityConfigOverride(
                id=uuid.uuid4(),
                facility_id=facility_id,
                config_key_id=config_key.id,
                version=version,
                override_value=None,
                changed_by_user_id=actor.user_id,
                change_reason=reason,
                effective_at=now,
                cleared_at=now,
                cleared_by_user_id=actor.user_id,
            )
        )
        self._audit(
            config_key,
            scope=str(ConfigScope.FACILITY),
            facility_id=facility_id,
            action=str(ConfigAuditAction.CLEAR),
            old_value=latest.override_value,
            new_value=None,
            version_before=latest.version,
            version_after=version,
            change_reason=reason,
            change_note=None,
            actor_user_id=actor.user_id,
            actor_name=actor.name,
            request_id=actor.request_id,
        )
        return version

    async def list_audit_log(
        self,
        key: str | None = None,
        facility_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConfigAuditLogEntry]:
        rows = [
            r
            for r in reversed(self.audit)
            if (key is None or r.config_key == key) and (facility_id is None or r.facility_id == facility_id)
        ]
        return rows[offset : offset + limit]


def make_event(
    minutes: float,
    user_id: uuid.UUID,
    outcome: AccessOutcome = AccessOutcome.ALLOWED,
    purpose: AccessPurpose = AccessPurpose.CLINICAL_CARE,
    is_emergency: bool = False,
    denial_reason: str | None = None,
    case_id: uuid.UUID | None = None,
    classification: PhiClassification = PhiClassification.CLINICAL,
    user_name: str = "Unknown",
) -> AccessEvent:
    """Create an AccessEvent ``minutes`` after BASE_TIME."""
    return AccessEvent(
        user_id=user_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        outcome=outcome,
        denial_reason=denial_reason,
        is_emergency=is_emergency,
        phi_classification=classification,
        access_purpose=purpose,
        case_id=case_id,
        user_name=user_name,
    )


def make_case(facility_id: uuid.UUID, status: str = "COMPLETED") -> SurgicalCase:
    """Create a transient SurgicalCase row."""
    return SurgicalCase(id=uuid.uuid4(), facility_id=facility_id, status=status, scheduled_date=None)


def make_session_factory(session: MagicMock) -> MagicMock:
    """Build an async_sessionmaker stand-in that yields ``session``.

    Both ``async with factory() as session`` and ``async with session.begin()``
    are supported. ``__aexit__`` returns False so exceptions propagate.

    Args:
        session: The mock AsyncSession to hand out.

    Returns:
        MagicMock callable returning an async context manager.
    """
    session_cm = MagicMock()
    session_cm.__aenter__ = AsyncMock(return_value=session)
    session_cm.__aexit__ = AsyncMock(return_value=False)

    begin_cm = MagicMock()
    begin_cm.__aenter__ = AsyncMock(return_value=session)
    begin_cm.__aexit__ = AsyncMock(return_value=False)
    session.begin = MagicMock(return_value=begin_cm)

    return MagicMock(return_value=session_cm)


@pytest.fixture()
def mock_session() -> MagicMock:
    """Create a mock AsyncSession with async execute/flush and sync add."""
    session = MagicMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session
