"""
Compliance -- Advisory flag heuristics over audit trail slices.

Responsibility:
    Derives non-authoritative compliance flags from a finite slice of audit
    entries, plus the field-level diff used by ``update`` audit rows.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Every function takes
    AuditEntry DTOs (or plain dicts) and returns values; the audit service
    and selectors call them, tests call them directly.

Flags:
    same_user_create_void      one actor both created and voided a document
    excessive_status_changes   one actor made more than N status changes
    multiple_ip_access         activity from more than N distinct IP addresses
    after_hours_activity       activity outside the business-hours window

Invariants enforced:
    - Flags are advisory only; nothing here blocks an operation.
    - ``diff_values`` emits only keys whose before/after differ.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID
from zoneinfo import ZoneInfo

from registrar_kernel.domain.dtos import AuditEntry, ComplianceFlag
from registrar_kernel.domain.values import AuditAction, BusinessHours, RegistrarPolicy

SAME_USER_CREATE_VOID = "same_user_create_void"
EXCESSIVE_STATUS_CHANGES = "excessive_status_changes"
MULTIPLE_IP_ACCESS = "multiple_ip_access"
AFTER_HOURS_ACTIVITY = "after_hours_activity"

_MISSING = object()


def diff_values(
    old_values: Mapping[str, Any] | None,
    new_values: Mapping[str, Any] | None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Field-level diff between two value maps.

    Keys present on only one side count as changed (the absent side is
    reported as None).  Unchanged keys are dropped from both results.
    """
    old_values = old_values or {}
    new_values = new_values or {}
    old_changes: dict[str, Any] = {}
    new_changes: dict[str, Any] = {}
    for key in sorted(set(old_values) | set(new_values)):
        before = old_values.get(key, _MISSING)
        after = new_values.get(key, _MISSING)
        if before == after:
            continue
        old_changes[key] = None if before is _MISSING else before
        new_changes[key] = None if after is _MISSING else after
    return old_changes, new_changes


def _by_registry(entries: Iterable[AuditEntry]) -> dict[UUID | None, list[AuditEntry]]:
    groups: dict[UUID | None, list[AuditEntry]] = defaultdict(list)
    for entry in entries:
        groups[entry.registry_id].append(entry)
    return groups


def same_actor_create_void(entries: Sequence[AuditEntry]) -> ComplianceFlag | None:
    """Flag registries created and voided by the same actor."""
    offenders: list[dict[str, str]] = []
    for registry_id, rows in _by_registry(entries).items():
        creators = {e.performed_by_id for e in rows if e.action is AuditAction.CREATE}
        voiders = {e.performed_by_id for e in rows if e.action is AuditAction.VOID}
        for actor_id in sorted(creators & voiders, key=str):
            offenders.append({"registry_id": str(registry_id), "actor_id": str(actor_id)})
    if not offenders:
        return None
    return ComplianceFlag(
        flag=SAME_USER_CREATE_VOID,
        severity="high",
        description="Same actor created and voided the document",
        details={"occurrences": offenders},
    )


def excessive_status_changes(
    entries: Sequence[AuditEntry], threshold: int = 5
) -> ComplianceFlag | None:
    """Flag actors with more than ``threshold`` status changes on one registry."""
    counts: dict[tuple[UUID | None, UUID], int] = defaultdict(int)
    for entry in entries:
        if entry.action is AuditAction.STATUS_CHANGE:
            counts[(entry.registry_id, entry.performed_by_id)] += 1
    offenders = [
        {"registry_id": str(rid), "actor_id": str(aid), "status_changes": n}
        for (rid, aid), n in sorted(counts.items(), key=lambda kv: (str(kv[0][0]), str(kv[0][1])))
        if n > threshold
    ]
    if not offenders:
        return None
    return ComplianceFlag(
        flag=EXCESSIVE_STATUS_CHANGES,
        severity="medium",
        description=f"More than {threshold} status changes by one actor",
        details={"threshold": threshold, "occurrences": offenders},
    )


def multiple_ip_access(
    entries: Sequence[AuditEntry], threshold: int = 10
) -> ComplianceFlag | None:
    """Flag slices touched from more than ``threshold`` distinct IP addresses."""
    addresses = {e.ip_address for e in entries if e.ip_address}
    if len(addresses) <= threshold:
        return None
    return ComplianceFlag(
        flag=MULTIPLE_IP_ACCESS,
        severity="medium",
        description=f"Activity from more than {threshold} distinct IP addresses",
        details={"threshold": threshold, "distinct_ips": len(addresses)},
    )


def is_outside_business_hours(entry: AuditEntry, hours: BusinessHours) -> bool:
    local = entry.performed_at.astimezone(ZoneInfo(hours.timezone)).time()
    return local < hours.start or local > hours.end


def after_hours_activity(
    entries: Sequence[AuditEntry], hours: BusinessHours | None = None
) -> ComplianceFlag | None:
    """Flag actions performed outside the business-hours window."""
    hours = hours or BusinessHours()
    outside = [e for e in entries if is_outside_business_hours(e, hours)]
    if not outside:
        return None
    return ComplianceFlag(
        flag=AFTER_HOURS_ACTIVITY,
        severity="low",
        description=(
            f"Activity outside business hours "
            f"{hours.start.strftime('%H:%M')}-{hours.end.strftime('%H:%M')} {hours.timezone}"
        ),
        details={
            "count": len(outside),
            "audit_ids": [str(e.id) for e in outside],
        },
    )


def compliance_flags(
    entries: Sequence[AuditEntry], policy: RegistrarPolicy | None = None
) -> tuple[ComplianceFlag, ...]:
    """Run every heuristic over ``entries`` and return the raised flags in a fixed order."""
    policy = policy or RegistrarPolicy()
    candidates = (
        same_actor_create_void(entries),
        excessive_status_changes(entries, policy.max_status_changes_per_actor),
        multiple_ip_access(entries, policy.max_distinct_ips),
        after_hours_activity(entries, policy.business_hours),
    )
    return tuple(flag for flag in candidates if flag is not None)
