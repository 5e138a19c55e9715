"""
LeadIngestor - creates or merges inbound leads from webhooks, CSV imports and manual entry.

Flow for one payload:
  1. Resolve field aliases, require first name and phone.
  2. Map the raw source onto LeadSource through a fixed alias table.
  3. Same (workspace, phone) already stored -> merge non-empty fields, no re-assignment.
  4. Otherwise resolve a creator, run the assignment rules, insert the lead.

The rule bookkeeping write and the lead insert share the request transaction,
so a failed insert never leaves a consumed round-robin slot behind.
"""
import enum
import json
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ConcurrencyError, NoMembersError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.models.activity import ActivityType
from app.models.lead import Lead, LeadSource, LeadPriority, category_for_status
from app.repositories.activity_repo import ActivityRepository
from app.repositories.lead_repo import LeadRepository
from app.repositories.rule_repo import RuleRepository
from app.repositories.workspace_repo import WorkspaceRepository
from app.services.assignment import AssignmentResolver, AssignmentResult
from app.services.lead_service import parse_priority, parse_status

logger = get_logger(__name__)

MANUAL_STRATEGY = "MANUAL"
UNASSIGNED_NOTE = "Lead created but unassigned: no assignment rule matched"

SOURCE_ALIASES: dict[str, LeadSource] = {
    "FACEBOOK": LeadSource.FACEBOOK,
    "FB": LeadSource.FACEBOOK,
    "FACEBOOK_AD": LeadSource.FACEBOOK,
    "FACEBOOK_LEAD_AD": LeadSource.FACEBOOK,
    "FACEBOOK_ADS": LeadSource.FACEBOOK,
    "INSTAGRAM": LeadSource.INSTAGRAM,
    "IG": LeadSource.INSTAGRAM,
    "GOOGLE": LeadSource.GOOGLE_ADS,
    "GOOGLE_AD": LeadSource.GOOGLE_ADS,
    "GOOGLE_ADS": LeadSource.GOOGLE_ADS,
    "ADWORDS": LeadSource.GOOGLE_ADS,
    "LINKEDIN": LeadSource.LINKEDIN,
    "REFERRAL": LeadSource.REFERRAL,
    "REFERENCE": LeadSource.REFERRAL,
    "WEBSITE": LeadSource.WEBSITE,
    "WEB": LeadSource.WEBSITE,
    "SITE": LeadSource.WEBSITE,
    "WALK_IN": LeadSource.WALK_IN,
    "WALKIN": LeadSource.WALK_IN,
    "PHONE": LeadSource.PHONE_INQUIRY,
    "PHONE_INQUIRY": LeadSource.PHONE_INQUIRY,
    "CALL": LeadSource.PHONE_INQUIRY,
    "WHATSAPP": LeadSource.WHATSAPP,
    "WA": LeadSource.WHATSAPP,
    "EMAIL": LeadSource.EMAIL_CAMPAIGN,
    "EMAIL_CAMPAIGN": LeadSource.EMAIL_CAMPAIGN,
    "EXHIBITION": LeadSource.EXHIBITION,
    "EXPO": LeadSource.EXHIBITION,
    "TRADE_SHOW": LeadSource.EXHIBITION,
    "PARTNER": LeadSource.PARTNER,
    "WEBHOOK": LeadSource.WEBHOOK,
    "OTHER": LeadSource.OTHER,
}

# Lead attribute -> accepted payload keys (matched case-insensitively)
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "first_name": ("firstName", "first_name", "fname"),
    "last_name": ("lastName", "last_name", "lname"),
    "phone": ("phone", "mobile", "phone_number"),
    "email": ("email",),
    "course_interested": ("courseInterested", "course_interested", "course"),
    "course_level": ("courseLevel", "course_level"),
    "preferred_batch": ("preferredBatch", "preferred_batch"),
    "city": ("city",),
    "state": ("state",),
    "country": ("country",),
    "pincode": ("pincode",),
    "address": ("address",),
    "tags": ("tags",),
    "campaign": ("campaign",),
}

OWNER_ALIASES = ("ownerId", "owner_id")
_OWNER_KEYS = frozenset(key.lower() for key in OWNER_ALIASES)

# Fields a duplicate payload may overwrite; status, source and owner are left alone
MERGEABLE_FIELDS = (
    "first_name", "last_name", "email", "city", "state", "country", "pincode", "address",
    "course_interested", "course_level", "preferred_batch", "budget", "tags", "campaign",
)


class IngestOrigin(str, enum.Enum):
    WEBHOOK = "WEBHOOK"
    MANUAL = "MANUAL"
    IMPORT = "IMPORT"


_SUBJECT_LABELS = {
    IngestOrigin.WEBHOOK: "via Webhook",
    IngestOrigin.MANUAL: "Manually",
    IngestOrigin.IMPORT: "via Import",
}

_DEFAULT_RAW_SOURCE = {
    IngestOrigin.WEBHOOK: "WEBHOOK",
    IngestOrigin.MANUAL: "WEBSITE",
    IngestOrigin.IMPORT: "OTHER",
}


def map_source(raw: str | None) -> LeadSource:
    """Normalize a free-form source label; anything unknown becomes OTHER."""
    if not raw:
        return LeadSource.OTHER
    key = "".join(ch if "A" <= ch <= "Z" else "_" for ch in str(raw).strip().upper())
    return SOURCE_ALIASES.get(key, LeadSource.OTHER)


def parse_custom_fields(raw: Any) -> dict:
    """Accept a dict or a JSON object string; anything else is an empty object."""
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            value = json.loads(raw)
        except ValueError:
            logger.warning("custom_fields_invalid_json")
            return {}
        return value if isinstance(value, dict) else {}
    return {}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _has_owner(row: Mapping[str, Any]) -> bool:
    """Whether a row names an owner under any spelling of the owner key."""
    return any(
        _clean(value) for key, value in row.items() if str(key).lower() in _OWNER_KEYS
    )


@dataclass
class LeadPayload:
    """Alias-resolved view of one inbound payload."""
    fields: dict[str, Any]
    raw_source: str
    source: LeadSource
    status: Any
    priority: LeadPriority
    custom_fields: dict
    owner_id: Optional[int] = None
    notes: Optional[str] = None

    @property
    def phone(self) -> str:
        return self.fields["phone"]


@dataclass
class IngestResult:
    lead: Lead
    action: str  # "created" | "updated"
    strategy: str
    note: Optional[str] = None


@dataclass
class ImportSummary:
    created: int = 0
    updated: int = 0
    errors: list[dict] = field(default_factory=list)
    results: list[IngestResult] = field(default_factory=list)


def normalize_payload(payload: Mapping[str, Any], default_source: str = "WEBHOOK") -> LeadPayload:
    """Resolve aliases and validate required fields. Raises ValidationError, no side effects."""
    lowered = {str(k).lower(): v for k, v in payload.items()}

    def pick(keys: Iterable[str]) -> Optional[str]:
        for key in keys:
            value = _clean(lowered.get(key.lower()))
            if value:
                return value
        return None

    fields = {attr: pick(keys) for attr, keys in FIELD_ALIASES.items()}

    if not fields["first_name"]:
        raise ValidationError(
            "Missing required field: firstName (accepted: firstName, first_name, fname)",
            field="firstName",
        )
    if not fields["phone"]:
        raise ValidationError(
            "Missing required field: phone (accepted: phone, mobile, phone_number)",
            field="phone",
        )

    budget = pick(("budget",))
    if budget is not None:
        try:
            fields["budget"] = float(budget)
        except ValueError:
            raise ValidationError(f"budget must be numeric, got {budget!r}", field="budget")

    owner_id = pick(OWNER_ALIASES)
    if owner_id is not None:
        try:
            owner_id = int(owner_id)
        except ValueError:
            raise ValidationError(f"ownerId must be an integer, got {owner_id!r}", field="ownerId")

    raw_source = pick(("source",)) or default_source
    return LeadPayload(
        fields={k: v for k, v in fields.items() if v is not None},
        raw_source=raw_source,
        source=map_source(raw_source),
        status=parse_status(pick(("status",))),
        priority=parse_priority(pick(("priority",))),
        custom_fields=parse_custom_fields(lowered.get("customfields", lowered.get("custom_fields"))),
        owner_id=owner_id,
        notes=pick(("notes",)),
    )


class LeadIngestor:
    def __init__(
        self,
        lead_repo: LeadRepository,
        rule_repo: RuleRepository,
        activity_repo: ActivityRepository,
        workspace_repo: WorkspaceRepository,
        resolver: AssignmentResolver | None = None,
    ):
        self.repo = lead_repo
        self.rules = rule_repo
        self.activities = activity_repo
        self.workspaces = workspace_repo
        self.resolver = resolver or AssignmentResolver()

    async def ingest(
        self,
        payload: Mapping[str, Any],
        workspace_id: int,
        *,
        origin: IngestOrigin = IngestOrigin.WEBHOOK,
        actor_id: int | None = None,
        auto_assign: bool = True,
    ) -> IngestResult:
        data = normalize_payload(payload, default_source=_DEFAULT_RAW_SOURCE[origin])

        if await self.workspaces.get_by_id(workspace_id) is None:
            raise NotFoundError(f"Workspace {workspace_id} not found", context={"workspace_id": workspace_id})

        existing = await self.repo.get_by_phone(workspace_id, data.phone)
        if existing is not None:
            return await self._merge(existing, data, origin, actor_id)
        return await self._create(data, workspace_id, origin, actor_id, auto_assign)

    async def import_leads(
        self,
        rows: Iterable[Mapping[str, Any]],
        workspace_id: int,
        actor_id: int,
        *,
        assign_to_me: bool = False,
        auto_assign: bool = False,
    ) -> ImportSummary:
        """Ingest parsed CSV rows one by one.

        Owner precedence per row: explicit ownerId, then ``assign_to_me``,
        then the assignment rules when ``auto_assign`` is set. Invalid rows
        are reported and skipped.
        """
        summary = ImportSummary()
        for index, row in enumerate(rows):
            row = dict(row)
            if assign_to_me and not _has_owner(row):
                row["ownerId"] = actor_id
            try:
                result = await self.ingest(
                    row,
                    workspace_id,
                    origin=IngestOrigin.IMPORT,
                    actor_id=actor_id,
                    auto_assign=auto_assign,
                )
            except ValidationError as e:
                summary.errors.append({"row": index, "field": e.field, "message": e.message})
                continue

            summary.results.append(result)
            if result.action == "created":
                summary.created += 1
            else:
                summary.updated += 1

        logger.info(
            "lead_import_finished",
            workspace_id=workspace_id,
            created=summary.created,
            updated=summary.updated,
            failed=len(summary.errors),
        )
        return summary

    async def _merge(self, lead: Lead, data: LeadPayload, origin: IngestOrigin, actor_id: int | None) -> IngestResult:
        changed = []
        for attr in MERGEABLE_FIELDS:
            incoming = data.fields.get(attr)
            if incoming is None or incoming == "":
                continue
            if getattr(lead, attr) != incoming:
                setattr(lead, attr, incoming)
                changed.append(attr)

        if data.custom_fields:
            merged = {**parse_custom_fields(lead.custom_fields), **data.custom_fields}
            encoded = json.dumps(merged)
            if encoded != lead.custom_fields:
                lead.custom_fields = encoded
                changed.append("custom_fields")

        lead = await self.repo.save(lead)

        description = f"Lead information updated from {data.raw_source}"
        if changed:
            description += f". Fields updated: {', '.join(changed)}"
        await self.activities.create(
            workspace_id=lead.workspace_id,
            lead_id=lead.id,
            user_id=actor_id,
            type=ActivityType.SYSTEM,
            subject=f"Lead Updated {_SUBJECT_LABELS[origin]}",
            description=description,
        )

        logger.info("lead_merged", lead_id=lead.id, origin=origin.value, fields=changed)
        return IngestResult(lead=lead, action="updated", strategy="NONE")

    async def _create(
        self,
        data: LeadPayload,
        workspace_id: int,
        origin: IngestOrigin,
        actor_id: int | None,
        auto_assign: bool,
    ) -> IngestResult:
        creator_id = actor_id or await self.workspaces.find_creator_id(workspace_id)
        if creator_id is None:
            raise NoMembersError(
                "Workspace has no members to assign lead to",
                context={"workspace_id": workspace_id},
            )

        now = datetime.now(UTC)
        if data.owner_id is not None:
            if await self.workspaces.get_member(workspace_id, data.owner_id) is None:
                raise ValidationError(
                    f"Owner {data.owner_id} is not a member of this workspace", field="ownerId"
                )
            assignment = AssignmentResult(assignee_id=data.owner_id, strategy_used=MANUAL_STRATEGY)
        elif auto_assign:
            assignment = await self._assign(workspace_id, (data.source.value, data.raw_source), now)
        else:
            assignment = AssignmentResult.none()

        lead = Lead(
            **data.fields,
            workspace_id=workspace_id,
            source=data.source,
            status=data.status,
            category=category_for_status(data.status),
            priority=data.priority,
            custom_fields=json.dumps(data.custom_fields) if data.custom_fields else None,
            created_by_id=creator_id,
            owner_id=assignment.assignee_id,
            assigned_at=now if assignment.is_assigned else None,
        )
        lead = await self.repo.create(lead)

        description = f"New lead received from {data.source.value} (original: {data.raw_source})"
        if data.notes:
            description += f": {data.notes}"
        note = None
        if assignment.is_assigned:
            description += f" (Auto-assigned via {assignment.strategy_used})"
        elif auto_assign:
            note = UNASSIGNED_NOTE
            description += " (Unassigned: no assignment rule matched)"

        await self.activities.create(
            workspace_id=workspace_id,
            lead_id=lead.id,
            user_id=actor_id,
            type=ActivityType.SYSTEM,
            subject=f"Lead Created {_SUBJECT_LABELS[origin]}",
            description=description,
        )

        logger.info(
            "lead_created",
            lead_id=lead.id,
            origin=origin.value,
            source=data.source.value,
            strategy=assignment.strategy_used,
            owner_id=assignment.assignee_id,
        )
        return IngestResult(lead=lead, action="created", strategy=assignment.strategy_used, note=note)

    async def _assign(self, workspace_id: int, sources: tuple[str, ...], now: datetime) -> AssignmentResult:
        """Resolve and book the assignment; one retry on a lost compare-and-set.

        A second conflict, or the rule store being unavailable, yields NONE so
        the lead is still created.
        """
        for attempt in (1, 2):
            try:
                async with self.repo.db.begin_nested():
                    rules = await self.rules.get_assignment_rules(workspace_id, sources)
                    result = self.resolver.resolve(rules, now)
                    if result.rule_mutation is not None:
                        if not await self.rules.apply_mutation(result.rule_mutation):
                            raise ConcurrencyError(
                                f"Assignment rule {result.rule_id} was updated concurrently",
                                context={"rule_id": result.rule_id, "attempt": attempt},
                            )
                return result
            except ConcurrencyError as e:
                logger.warning("assignment_conflict", workspace_id=workspace_id, **e.context)
            except SQLAlchemyError:
                logger.exception("assignment_rules_unavailable", workspace_id=workspace_id)
                return AssignmentResult.none()

        logger.warning("assignment_gave_up", workspace_id=workspace_id)
        return AssignmentResult.none()
