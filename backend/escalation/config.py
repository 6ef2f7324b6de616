"""Typed escalation configuration backed by the company_settings table."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.audit import record_audit
from backend.common.constants import DEFAULT_COMPANY_TIMEZONE, AuditAction
from backend.common.exceptions import ValidationException
from backend.company.service import CompanyService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationConfig:
    escalation_days_before_auto_approval: int = 3
    escalation_enabled: bool = True
    require_signature_for_denial: bool = False
    auto_skip_absent_approvers: bool = True
    auto_approve_after_max_escalations: bool = False
    max_escalation_levels: int = 3
    company_timezone: str = DEFAULT_COMPANY_TIMEZONE


# Setting key → (dataclass field, category, description)
SETTING_KEYS: dict[str, tuple[str, str, str]] = {
    "escalationDaysBeforeAutoApproval": (
        "escalation_days_before_auto_approval", "escalation",
        "Number of days before a pending approval is escalated to the next level",
    ),
    "escalationEnabled": (
        "escalation_enabled", "escalation",
        "Whether automatic escalation is enabled",
    ),
    "requireSignatureForDenial": (
        "require_signature_for_denial", "approval",
        "Whether denials require a digital signature",
    ),
    "autoSkipAbsentApprovers": (
        "auto_skip_absent_approvers", "escalation",
        "Automatically skip approvers who are on leave",
    ),
    "autoApproveAfterMaxEscalations": (
        "auto_approve_after_max_escalations", "escalation",
        "Automatically approve requests after maximum escalation levels",
    ),
    "maxEscalationLevels": (
        "max_escalation_levels", "escalation",
        "Maximum number of escalation levels before auto-approval",
    ),
    "companyTimezone": (
        "company_timezone", "escalation",
        "Company timezone for escalation calculations",
    ),
}

_FIELD_TYPES = {f.name: f.type for f in dataclasses.fields(EscalationConfig)}


def _to_setting_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_escalation_settings(raw: dict[str, str]) -> EscalationConfig:
    """Overlay stored string values onto the defaults."""
    defaults = EscalationConfig()
    values: dict[str, Any] = {}
    for key, stored in raw.items():
        if key not in SETTING_KEYS:
            continue
        field_name = SETTING_KEYS[key][0]
        kind = _FIELD_TYPES[field_name]
        if kind in ("bool", bool):
            values[field_name] = stored.strip().lower() == "true"
        elif kind in ("int", int):
            try:
                values[field_name] = int(float(stored))
            except (ValueError, OverflowError):
                logger.warning(
                    "Ignoring non-numeric setting %s=%r; using default %s",
                    key, stored, getattr(defaults, field_name),
                )
        else:
            values[field_name] = stored
    return dataclasses.replace(defaults, **values)


def _validate(config: EscalationConfig) -> None:
    errors: dict[str, list[str]] = {}
    if config.escalation_days_before_auto_approval < 1:
        errors["escalationDaysBeforeAutoApproval"] = ["Must be at least 1 day."]
    if config.max_escalation_levels < 1:
        errors["maxEscalationLevels"] = ["Must be at least 1 level."]
    try:
        ZoneInfo(config.company_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        errors["companyTimezone"] = [f"Unknown timezone '{config.company_timezone}'."]
    if errors:
        raise ValidationException(errors)


class EscalationConfigService:
    """Read, seed and update the escalation settings."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.company = CompanyService(db)

    async def get_escalation_config(self) -> EscalationConfig:
        raw = await self.company.get_settings(SETTING_KEYS.keys())
        return parse_escalation_settings(raw)

    async def initialize_default_settings(self) -> None:
        """Insert any missing keys with their default values; existing values win."""
        defaults = EscalationConfig()
        for key, (field_name, category, description) in SETTING_KEYS.items():
            await self.company.upsert_setting(
                key,
                _to_setting_value(getattr(defaults, field_name)),
                category=category,
                description=description,
                overwrite=False,
            )

    async def update_escalation_config(
        self,
        changes: dict[str, Any],
        *,
        actor_id: Optional[Any] = None,
    ) -> EscalationConfig:
        """Apply *changes* keyed by setting name (e.g. ``maxEscalationLevels``)."""
        unknown = [k for k in changes if k not in SETTING_KEYS]
        if unknown:
            raise ValidationException({k: ["Unknown setting."] for k in unknown})
        not_numeric = [
            k for k, v in changes.items()
            if _FIELD_TYPES[SETTING_KEYS[k][0]] in ("int", int)
            and not (isinstance(v, int) or str(v).strip().isdigit())
        ]
        if not_numeric:
            raise ValidationException({k: ["Must be a whole number."] for k in not_numeric})

        current = await self.get_escalation_config()
        merged = parse_escalation_settings(
            {
                **{k: _to_setting_value(getattr(current, f)) for k, (f, _, _) in SETTING_KEYS.items()},
                **{k: _to_setting_value(v) for k, v in changes.items()},
            }
        )
        _validate(merged)

        for key in changes:
            field_name, category, description = SETTING_KEYS[key]
            await self.company.upsert_setting(
                key,
                _to_setting_value(getattr(merged, field_name)),
                category=category,
                description=description,
            )

        await record_audit(
            self.db,
            action=AuditAction.update,
            entity_type="company_setting",
            entity_id="escalation",
            actor_id=actor_id,
            old_values=dataclasses.asdict(current),
            new_values=dataclasses.asdict(merged),
        )
        logger.info("Escalation settings updated: %s", sorted(changes))
        return merged
