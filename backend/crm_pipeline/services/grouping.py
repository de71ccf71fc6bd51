"""Pipeline reshaping - lead-by-project expansion, stage buckets, timelines.

Everything here is a pure function over already-fetched snapshots: inputs are
never mutated and every call recomputes from scratch.
"""

from typing import Iterable, Optional, Sequence

from crm_pipeline.schemas.crm import STAGES, ActivityLog, Lead, SiteVisit
from crm_pipeline.schemas.pipeline import ExpandedLead, ProjectGroup, TimelineEntry

# Activity entity types that carry details.leadId
LEAD_ENTITY_TYPES = {"lead", "call_log", "site_visit", "deal"}


def _visit_subject(visit: SiteVisit) -> tuple[Optional[str], Optional[str], Optional[str]]:
    # (kind, id, display name); a named project wins over a property
    if visit.project and visit.project.name:
        return "project", visit.project.id, visit.project.name
    if visit.property and visit.property.title:
        return "property", visit.property.id, visit.property.title
    return None, None, None


def visit_subject_name(visit: SiteVisit) -> Optional[str]:
    """Display name of the project or property a visit was to."""
    return _visit_subject(visit)[2]


def visit_subject_id(visit: SiteVisit) -> Optional[str]:
    """Id of the visited subject, when the embedded payload carries one."""
    return _visit_subject(visit)[1]


def visit_subject_key(visit: SiteVisit) -> Optional[str]:
    """Grouping key: entity id when available, display name otherwise."""
    kind, subject_id, name = _visit_subject(visit)
    if name is None:
        return None
    if subject_id:
        return f"{kind}:{subject_id}"
    return f"name:{name}"


def lead_subject_name(lead: Lead) -> Optional[str]:
    """The project/property the lead was created against, if any."""
    if lead.project and lead.project.name:
        return lead.project.name
    if lead.property and lead.property.title:
        return lead.property.title
    return None


def _partition_visits(visits: Iterable[SiteVisit]) -> dict[str, list[SiteVisit]]:
    groups: dict[str, list[SiteVisit]] = {}
    for visit in visits:
        key = visit_subject_key(visit)
        if key is None:
            continue
        groups.setdefault(key, []).append(visit)
    return groups


def expand_lead(lead: Lead) -> list[ExpandedLead]:
    """Expand one lead into one row per visited project (at least one row)."""
    groups = _partition_visits(lead.site_visits)
    base = dict(lead)

    if not groups:
        return [ExpandedLead(
            **base,
            lead_id=lead.id,
            display_project=lead_subject_name(lead),
            project_key=lead.id,
            project_visit_count=0,
        )]

    rows = []
    used_keys: set[str] = set()
    for key, visits in groups.items():
        name = visit_subject_name(visits[0])
        project_key = f"{lead.id}-{name}"
        if project_key in used_keys:
            # Same display name, different entity
            project_key = f"{project_key}-{key}"
        used_keys.add(project_key)
        rows.append(ExpandedLead(
            **base,
            lead_id=lead.id,
            display_project=name,
            project_key=project_key,
            project_visit_count=len(visits),
        ))
    return rows


def expand_leads_by_project(leads: Iterable[Lead]) -> list[ExpandedLead]:
    """Expand every lead into (lead, project) rows, preserving fetch order."""
    expanded: list[ExpandedLead] = []
    for lead in leads:
        expanded.extend(expand_lead(lead))
    return expanded


def group_by_stage(
    rows: Iterable[ExpandedLead],
    stages: Sequence[str] = STAGES,
) -> dict[str, list[ExpandedLead]]:
    """Stable partition of rows into one bucket per stage, in stage order.

    Every stage gets a bucket even when empty. Rows whose stage is not in
    ``stages`` land in no bucket.
    """
    buckets: dict[str, list[ExpandedLead]] = {stage: [] for stage in stages}
    for row in rows:
        bucket = buckets.get(row.stage)
        if bucket is not None:
            bucket.append(row)
    return buckets


def build_unified_timeline(lead: Lead) -> list[TimelineEntry]:
    """Merge a lead's site visits and call logs, most recent first."""
    entries = [
        TimelineEntry(type="visit", date=visit.scheduled_at, record=visit)
        for visit in lead.site_visits
    ]
    entries.extend(
        TimelineEntry(type="call", date=call.call_date, record=call)
        for call in lead.call_logs
    )
    # sorted() is stable; equal timestamps keep visits ahead of calls
    return sorted(entries, key=lambda e: e.date, reverse=True)


def group_visits_by_project(primary: Lead, related: Iterable[Lead] = ()) -> dict[str, ProjectGroup]:
    """Regroup all site visits of a person's lead records by visited project.

    ``related`` are the other lead records sharing the primary's phone number.
    The representative lead of a group is the first lead that contributed a
    visit to it. Returns an empty mapping when nobody has any grouped visit.
    """
    accumulated: dict[str, dict] = {}
    for lead in [primary, *related]:
        for visit in lead.site_visits:
            key = visit_subject_key(visit)
            if key is None:
                continue
            group = accumulated.setdefault(key, {
                "project_name": visit_subject_name(visit),
                "project_id": visit_subject_id(visit),
                "lead": lead,
                "visits": [],
            })
            group["visits"].append(visit)

    groups: dict[str, ProjectGroup] = {}
    for key, data in accumulated.items():
        name = data["project_name"]
        if name in groups:
            name = f"{name} ({key})"
        data["visits"] = sorted(data["visits"], key=lambda v: v.scheduled_at, reverse=True)
        groups[name] = ProjectGroup(**{**data, "project_name": name})
    return groups


def activities_for_lead(activities: Iterable[ActivityLog], lead: Lead) -> list[ActivityLog]:
    """Activities that mention a lead, newest first.

    An activity matches on ``details.leadId`` for lead-related entity types,
    or on ``details.leadName`` for older entries that only recorded the name.
    """
    matched = []
    for activity in activities:
        details = activity.details
        if activity.entity_type in LEAD_ENTITY_TYPES and details.get("leadId") == lead.id:
            matched.append(activity)
        elif details.get("leadName") == lead.name:
            matched.append(activity)
    return sorted(matched, key=lambda a: a.created_at, reverse=True)
