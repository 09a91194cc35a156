"""Pydantic models for roles, options, presets and batch results.

Models serialise with camelCase aliases so the per-user JSON documents keep
the field names the files have always used (``lastUpdated``,
``subscriptionIds``, ``roleNames``...).
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

Command = Literal["activate", "deactivate"]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class AzPimBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump as a JSON-ready dict using the camelCase aliases."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Platform records ---


class Subscription(AzPimBaseModel):
    """An Azure subscription visible to the signed-in principal."""

    subscription_id: str
    display_name: str
    tenant_id: str = ""


class RoleIdentity(AzPimBaseModel):
    """Fields shared by eligible and active roles. Immutable once fetched."""

    model_config = ConfigDict(frozen=True)

    id: str
    role_name: str
    scope: str
    scope_display_name: str
    role_definition_id: str


class EligibleRole(RoleIdentity):
    """A role eligibility schedule the principal can activate."""

    role_eligibility_schedule_id: str


class ActiveRole(RoleIdentity):
    """A currently activated role assignment."""

    linked_role_eligibility_schedule_id: str = ""
    start_date_time: str = ""
    end_date_time: str = ""
    subscription_id: str
    subscription_name: str


class ResolvedTarget(AzPimBaseModel):
    """What is needed to submit one activation or deactivation request."""

    id: str
    role_name: str
    scope: str
    scope_display_name: str
    role_definition_id: str
    role_eligibility_schedule_id: str | None = None
    linked_role_eligibility_schedule_id: str | None = None
    subscription_id: str | None = None
    subscription_name: str | None = None

    @classmethod
    def from_role(cls, role: RoleIdentity) -> "ResolvedTarget":
        """Build a target from an eligible or active role."""
        if isinstance(role, EligibleRole):
            return cls(
                id=role.id,
                role_name=role.role_name,
                scope=role.scope,
                scope_display_name=role.scope_display_name,
                role_definition_id=role.role_definition_id,
                role_eligibility_schedule_id=role.role_eligibility_schedule_id,
            )
        if isinstance(role, ActiveRole):
            return cls(
                id=role.id,
                role_name=role.role_name,
                scope=role.scope,
                scope_display_name=role.scope_display_name,
                role_definition_id=role.role_definition_id,
                linked_role_eligibility_schedule_id=role.linked_role_eligibility_schedule_id,
                subscription_id=role.subscription_id,
                subscription_name=role.subscription_name,
            )
        return cls(
            id=role.id,
            role_name=role.role_name,
            scope=role.scope,
            scope_display_name=role.scope_display_name,
            role_definition_id=role.role_definition_id,
        )

    @property
    def label(self) -> str:
        return f"{self.role_name} @ {self.scope_display_name}"


class ActivationRequest(AzPimBaseModel):
    """SelfActivate request for one eligible role."""

    principal_id: str
    role_definition_id: str
    role_eligibility_schedule_id: str
    role_name: str
    scope: str
    justification: str
    duration_hours: int


class DeactivationRequest(AzPimBaseModel):
    """SelfDeactivate request for one active assignment."""

    principal_id: str
    role_definition_id: str
    linked_role_eligibility_schedule_id: str
    scope: str
    subscription_id: str | None = None
    role_name: str | None = None


class ActivationResponse(AzPimBaseModel):
    """Outcome reported by the platform for an activation request."""

    status: str | None = None


# --- Options and presets ---


class OptionSet(AzPimBaseModel):
    """Option values for one command. None means "not resolved yet"."""

    subscription_id: str | None = None
    role_names: list[str] | None = None
    duration_hours: int | None = None
    justification: str | None = None
    allow_multiple: bool | None = None

    @field_validator("role_names", mode="before")
    @classmethod
    def clean_role_names(cls, v: Any) -> Any:
        """Keep non-blank strings only, trimmed."""
        if v is None or not isinstance(v, list):
            return v
        return [item.strip() for item in v if isinstance(item, str) and item.strip()]


class PresetEntry(AzPimBaseModel):
    """A named bundle of option defaults."""

    description: str | None = None
    activate: OptionSet | None = None
    deactivate: OptionSet | None = None

    def block(self, command: Command) -> OptionSet | None:
        return self.activate if command == "activate" else self.deactivate


class PresetDefaults(AzPimBaseModel):
    """Default preset names and base option blocks."""

    activate_preset_name: str | None = Field(default=None, alias="activatePreset")
    deactivate_preset_name: str | None = Field(default=None, alias="deactivatePreset")
    base_activate: OptionSet | None = Field(default=None, alias="activate")
    base_deactivate: OptionSet | None = Field(default=None, alias="deactivate")

    def preset_name(self, command: Command) -> str | None:
        if command == "activate":
            return self.activate_preset_name
        return self.deactivate_preset_name

    def base(self, command: Command) -> OptionSet | None:
        return self.base_activate if command == "activate" else self.base_deactivate


class PresetsDocument(AzPimBaseModel):
    """The per-user presets file."""

    version: Literal[1] = 1
    defaults: PresetDefaults = Field(default_factory=PresetDefaults)
    presets: dict[str, PresetEntry] = Field(default_factory=dict)


# --- Durable per-user documents ---


class SubscriptionCacheDocument(AzPimBaseModel):
    """Persisted subscription listing with its fetch time."""

    version: Literal[1] = 1
    last_updated: datetime
    subscriptions: list[Subscription] = Field(default_factory=list)

    @field_validator("last_updated")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v


class FavoritesDocument(AzPimBaseModel):
    """Favorite subscription ids, lower-cased and unique."""

    version: Literal[1] = 1
    subscription_ids: list[str] = Field(default_factory=list)

    @field_validator("subscription_ids", mode="before")
    @classmethod
    def normalize_ids(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return []
        ids = [item.strip().lower() for item in v if isinstance(item, str) and item.strip()]
        return list(dict.fromkeys(ids))


# --- Batch results ---


class BatchResultItem(AzPimBaseModel):
    """Outcome of one target in a batch."""

    target_id: str
    role_name: str
    scope_display_name: str
    success: bool
    status: str | None = None
    error: str | None = None
    error_type: str | None = None


class BatchResult(AzPimBaseModel):
    """Everything a caller needs to report on one activate/deactivate run."""

    command: Command
    subscription_id: str | None = None
    subscription_name: str | None = None
    requested_role_names: list[str] = Field(default_factory=list)
    resolved_targets: list[ResolvedTarget] = Field(default_factory=list)
    duration_hours: int | None = None
    justification: str
    dry_run: bool = False
    cancelled: bool = False
    results: list[BatchResultItem] | None = None

    @computed_field(alias="successCount")  # type: ignore[prop-decorator]
    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results or [] if r.success)

    @computed_field(alias="failCount")  # type: ignore[prop-decorator]
    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.results or [] if not r.success)
