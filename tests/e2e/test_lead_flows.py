"""
End-to-end flows against a real (SQLite) database:
ingestion -> assignment bookkeeping -> status change -> WhatsApp activity.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.exceptions import NoMembersError, NotFoundError, ValidationError
from app.models.activity import ActivityType
from app.models.assignment_rule import AssignmentRule, AssignmentType
from app.models.lead import Lead, LeadCategory, LeadSource, LeadStatus
from app.models.workspace import Workspace
from app.repositories.activity_repo import ActivityRepository
from app.repositories.lead_repo import LeadRepository
from app.services.assignment import AssignmentResolver, RuleMutation
from app.services.lead_ingestor import IngestOrigin, LeadIngestor, UNASSIGNED_NOTE
from app.services.lead_service import LeadService
from app.services.notification_service import DispatchResult
from app.services.status_notifier import StatusChangeNotifier
from app.services.template_renderer import TemplateRenderer


def _ingestor(repos, resolver=None) -> LeadIngestor:
    return LeadIngestor(repos["leads"], repos["rules"], repos["activities"], repos["workspaces"], resolver=resolver)


def _lead_service(repos, gateway) -> LeadService:
    notifier = StatusChangeNotifier(
        repos["rules"], repos["leads"], repos["activities"], repos["workspaces"], gateway,
        renderer=TemplateRenderer(), default_country_code="91",
    )
    return LeadService(repos["leads"], repos["activities"], repos["workspaces"], notifier)


async def _count_leads(repos, workspace_id, phone) -> int:
    stmt = select(func.count()).select_from(Lead).where(Lead.workspace_id == workspace_id, Lead.phone == phone)
    return (await repos["leads"].db.execute(stmt)).scalar_one()


class SubjectlessActivityRepository(ActivityRepository):
    """Activity writes that violate NOT NULL on ``subject`` at flush time."""

    async def create(self, **kwargs):
        kwargs["subject"] = None
        return await super().create(**kwargs)


async def _add_rule(repos, workspace_id, assignee_id, assignment_type, **kwargs) -> AssignmentRule:
    rule = AssignmentRule(
        workspace_id=workspace_id,
        assignee_id=assignee_id,
        assignment_type=assignment_type,
        **kwargs,
    )
    return await repos["rules"].save_assignment_rule(rule)


class TestIngestion:

    async def test_new_lead_without_rules_is_unassigned(self, seeded, repos):
        ws = seeded["workspace"]

        result = await _ingestor(repos).ingest(
            {"firstName": "Nisha", "phone": "9000000001", "source": "instagram"}, ws.id
        )

        assert result.action == "created"
        assert result.strategy == "NONE"
        assert result.note == UNASSIGNED_NOTE
        lead = result.lead
        assert lead.owner_id is None
        assert lead.source == LeadSource.INSTAGRAM
        assert lead.status == LeadStatus.NEW_LEAD
        assert lead.category == LeadCategory.FRESH
        # Webhook leads are attributed to the first admin
        assert lead.created_by_id == seeded["admin"].id

        activities = await repos["activities"].get_by_lead_id(lead.id)
        assert len(activities) == 1
        assert activities[0].type == ActivityType.SYSTEM
        assert activities[0].subject == "Lead Created via Webhook"
        assert "original: instagram" in activities[0].description
        assert "Unassigned" in activities[0].description

    async def test_specific_rule_assigns_without_bookkeeping(self, seeded, repos):
        ws = seeded["workspace"]
        rule = await _add_rule(repos, ws.id, seeded["agent_b"].id, AssignmentType.SPECIFIC, source="FACEBOOK")

        result = await _ingestor(repos).ingest({"firstName": "Om", "phone": "9000000002", "source": "fb"}, ws.id)

        assert result.strategy == "SPECIFIC"
        assert result.lead.owner_id == seeded["agent_b"].id
        assert result.lead.assigned_at is not None
        await repos["rules"].db.refresh(rule)
        assert rule.version == 0
        assert rule.assignment_count == 0

    async def test_rule_for_other_source_does_not_match(self, seeded, repos):
        ws = seeded["workspace"]
        await _add_rule(repos, ws.id, seeded["agent_b"].id, AssignmentType.SPECIFIC, source="FACEBOOK")

        result = await _ingestor(repos).ingest({"firstName": "Om", "phone": "9000000003", "source": "referral"}, ws.id)

        assert result.strategy == "NONE"
        assert result.lead.owner_id is None

    async def test_round_robin_rotates_across_ingestions(self, seeded, repos):
        ws = seeded["workspace"]
        first = await _add_rule(repos, ws.id, seeded["agent_a"].id, AssignmentType.ROUND_ROBIN, priority=0)
        second = await _add_rule(repos, ws.id, seeded["agent_b"].id, AssignmentType.ROUND_ROBIN, priority=1)
        ingestor = _ingestor(repos)

        owners = []
        for n in range(3):
            result = await ingestor.ingest({"firstName": f"Lead{n}", "phone": f"90000001{n:02d}"}, ws.id)
            assert result.strategy == "ROUND_ROBIN"
            owners.append(result.lead.owner_id)

        assert owners == [seeded["agent_a"].id, seeded["agent_b"].id, seeded["agent_a"].id]

        await repos["rules"].db.refresh(first)
        await repos["rules"].db.refresh(second)
        assert (first.assignment_count, first.version) == (2, 2)
        assert (second.assignment_count, second.version) == (1, 1)

    async def test_duplicate_phone_merges_and_skips_assignment(self, seeded, repos):
        ws = seeded["workspace"]
        await _add_rule(repos, ws.id, seeded["agent_a"].id, AssignmentType.ROUND_ROBIN)
        await _add_rule(repos, ws.id, seeded["agent_b"].id, AssignmentType.ROUND_ROBIN)
        resolver = MagicMock(wraps=AssignmentResolver())
        ingestor = _ingestor(repos, resolver=resolver)

        created = await ingestor.ingest(
            {"firstName": "Zoya", "phone": "9000000200", "email": "", "source": "website"}, ws.id
        )
        merged = await ingestor.ingest(
            {"firstName": "Zoya", "phone": "9000000200", "email": "zoya@example.com", "status": "CONVERTED",
             "source": "facebook"},
            ws.id,
        )

        assert created.action == "created"
        assert merged.action == "updated"
        assert merged.strategy == "NONE"
        assert merged.lead.id == created.lead.id
        assert resolver.resolve.call_count == 1
        assert await _count_leads(repos, ws.id, "9000000200") == 1

        lead = merged.lead
        assert lead.email == "zoya@example.com"
        # Status, source and owner are not touched by a merge
        assert lead.status == LeadStatus.NEW_LEAD
        assert lead.source == LeadSource.WEBSITE
        assert lead.owner_id == created.lead.owner_id

        activities = await repos["activities"].get_by_lead_id(lead.id, type=ActivityType.SYSTEM)
        subjects = sorted(a.subject for a in activities)
        assert subjects == ["Lead Created via Webhook", "Lead Updated via Webhook"]

    async def test_same_phone_in_other_workspace_is_a_new_lead(self, seeded, repos):
        ws = seeded["workspace"]
        other = await repos["workspaces"].create(Workspace(name="Beta Institute"))
        await repos["workspaces"].add_member(other.id, seeded["admin"])
        ingestor = _ingestor(repos)

        first = await ingestor.ingest({"firstName": "Raj", "phone": "9000000300"}, ws.id)
        second = await ingestor.ingest({"firstName": "Raj", "phone": "9000000300"}, other.id)

        assert first.action == second.action == "created"
        assert first.lead.id != second.lead.id

    async def test_workspace_without_members_is_rejected(self, repos):
        empty = await repos["workspaces"].create(Workspace(name="Empty Co"))

        with pytest.raises(NoMembersError) as exc:
            await _ingestor(repos).ingest({"firstName": "Ana", "phone": "9000000400"}, empty.id)

        assert exc.value.code == "no_workspace_members"
        assert exc.value.status_code == 400
        assert await _count_leads(repos, empty.id, "9000000400") == 0

    async def test_unknown_workspace(self, repos):
        with pytest.raises(NotFoundError):
            await _ingestor(repos).ingest({"firstName": "Ana", "phone": "9000000401"}, 9999)

    async def test_explicit_owner_skips_rules(self, seeded, repos):
        ws = seeded["workspace"]
        await _add_rule(repos, ws.id, seeded["agent_a"].id, AssignmentType.SPECIFIC)

        result = await _ingestor(repos).ingest(
            {"firstName": "Dev", "phone": "9000000500", "ownerId": str(seeded["agent_b"].id)},
            ws.id,
            origin=IngestOrigin.MANUAL,
            actor_id=seeded["agent_a"].id,
        )

        assert result.strategy == "MANUAL"
        assert result.lead.owner_id == seeded["agent_b"].id
        assert result.lead.created_by_id == seeded["agent_a"].id
        assert result.lead.source == LeadSource.WEBSITE

    async def test_owner_outside_workspace_is_rejected(self, seeded, repos):
        with pytest.raises(ValidationError) as exc:
            await _ingestor(repos).ingest(
                {"firstName": "Dev", "phone": "9000000501", "ownerId": 4242},
                seeded["workspace"].id,
            )
        assert exc.value.field == "ownerId"


class TestAssignmentConcurrency:

    async def test_stale_version_is_rejected(self, seeded, repos):
        ws = seeded["workspace"]
        rule = await _add_rule(repos, ws.id, seeded["agent_a"].id, AssignmentType.ROUND_ROBIN)
        mutation = RuleMutation(rule_id=rule.id, expected_version=0, last_assigned_at=rule.created_at)

        assert await repos["rules"].apply_mutation(mutation) is True
        assert await repos["rules"].apply_mutation(mutation) is False

        await repos["rules"].db.refresh(rule)
        assert rule.version == 1
        assert rule.assignment_count == 1

    async def test_single_conflict_is_retried(self, seeded, repos, monkeypatch):
        ws = seeded["workspace"]
        await _add_rule(repos, ws.id, seeded["agent_a"].id, AssignmentType.ROUND_ROBIN)
        cas = AsyncMock(side_effect=[False, True])
        monkeypatch.setattr(repos["rules"], "apply_mutation", cas)

        result = await _ingestor(repos).ingest({"firstName": "Ila", "phone": "9000000600"}, ws.id)

        assert cas.await_count == 2
        assert result.strategy == "ROUND_ROBIN"
        assert result.lead.owner_id == seeded["agent_a"].id

    async def test_repeated_conflict_degrades_to_unassigned(self, seeded, repos, monkeypatch):
        ws = seeded["workspace"]
        await _add_rule(repos, ws.id, seeded["agent_a"].id, AssignmentType.ROUND_ROBIN)
        cas = AsyncMock(side_effect=[False, False])
        monkeypatch.setattr(repos["rules"], "apply_mutation", cas)

        result = await _ingestor(repos).ingest({"firstName": "Ila", "phone": "9000000601"}, ws.id)

        assert cas.await_count == 2
        assert result.action == "created"
        assert result.strategy == "NONE"
        assert result.lead.owner_id is None
        assert result.note == UNASSIGNED_NOTE

    async def test_rule_store_outage_still_creates_lead(self, seeded, repos, monkeypatch, session_factory):
        ws = seeded["workspace"]
        await _add_rule(repos, ws.id, seeded["agent_a"].id, AssignmentType.ROUND_ROBIN)
        outage = OperationalError("SELECT assignment_rules", {}, Exception("database is locked"))
        monkeypatch.setattr(repos["rules"], "get_assignment_rules", AsyncMock(side_effect=outage))

        result = await _ingestor(repos).ingest({"firstName": "Ila", "phone": "9000000602"}, ws.id)

        assert result.action == "created"
        assert result.strategy == "NONE"
        assert result.lead.owner_id is None
        assert result.note == UNASSIGNED_NOTE

        await repos["leads"].db.commit()
        async with session_factory() as session:
            stored = await LeadRepository(session).get_by_id(result.lead.id, workspace_id=ws.id)
            activities = await ActivityRepository(session).get_by_lead_id(result.lead.id)
        assert stored is not None
        assert stored.owner_id is None
        assert [a.subject for a in activities] == ["Lead Created via Webhook"]


class TestImport:

    async def test_import_reports_created_updated_and_errors(self, seeded, repos):
        ws = seeded["workspace"]
        admin = seeded["admin"]
        ingestor = _ingestor(repos)
        await ingestor.ingest({"firstName": "Existing", "phone": "9000000700"}, ws.id)

        summary = await ingestor.import_leads(
            [
                {"first_name": "Row", "mobile": "9000000701", "source": "Expo"},
                {"first_name": "Existing", "phone": "9000000700", "city": "Pune"},
                {"first_name": "", "phone": "9000000702"},
            ],
            ws.id,
            admin.id,
            assign_to_me=True,
        )

        assert (summary.created, summary.updated) == (1, 1)
        assert len(summary.errors) == 1
        assert summary.errors[0]["row"] == 2
        assert summary.errors[0]["field"] == "firstName"
        created = summary.results[0].lead
        assert created.owner_id == admin.id
        assert created.source == LeadSource.EXHIBITION
        assert summary.results[0].strategy == "MANUAL"
        assert summary.results[1].lead.city == "Pune"

    async def test_owner_column_in_any_case_beats_assign_to_me(self, seeded, repos):
        ws = seeded["workspace"]

        summary = await _ingestor(repos).import_leads(
            [{"FirstName": "Case", "Phone": "9000000710", "OwnerId": str(seeded["agent_b"].id)}],
            ws.id,
            seeded["admin"].id,
            assign_to_me=True,
        )

        assert summary.created == 1
        assert summary.results[0].strategy == "MANUAL"
        assert summary.results[0].lead.owner_id == seeded["agent_b"].id


class TestStatusChange:

    async def _lead_with_trigger(self, seeded, repos, status="QUALIFIED"):
        ws = seeded["workspace"]
        await repos["rules"].upsert_trigger(
            ws.id,
            status,
            campaign_name="qualified_welcome",
            source="Acme",
            is_enabled=True,
            template_params_json=json.dumps(["{{FirstName}}", "{{CourseInterested}}", "{{Unknown}}"]),
            params_fallback_json=json.dumps({"CourseInterested": "our programs"}),
        )
        result = await _ingestor(repos).ingest({"firstName": "Tara", "phone": "98765-43210"}, ws.id)
        return result.lead

    async def test_status_change_dispatches_trigger(self, seeded, repos, fake_gateway):
        lead = await self._lead_with_trigger(seeded, repos)
        gateway = fake_gateway

        updated = await _lead_service(repos, gateway).update_status(
            lead.id, "qualified", seeded["agent_a"].id, seeded["workspace"].id
        )

        assert updated.status == LeadStatus.QUALIFIED
        assert updated.category == LeadCategory.ACTIVE
        assert gateway.calls == [{
            "phone": "919876543210",
            "campaign_name": "qualified_welcome",
            "source_label": "Acme",
            "params": ["Tara", "our programs", "{{Unknown}}"],
        }]

        status_changes = await repos["activities"].get_by_lead_id(lead.id, type=ActivityType.STATUS_CHANGE)
        assert len(status_changes) == 1
        assert status_changes[0].description == "Status changed from NEW_LEAD to QUALIFIED"

        whatsapp = await repos["activities"].get_by_lead_id(lead.id, type=ActivityType.WHATSAPP)
        assert len(whatsapp) == 1
        assert whatsapp[0].subject == "WhatsApp sent via qualified_welcome"

    async def test_gateway_failure_does_not_fail_status_change(self, seeded, repos, fake_gateway):
        lead = await self._lead_with_trigger(seeded, repos)
        gateway = fake_gateway
        gateway.error = RuntimeError("provider down")

        updated = await _lead_service(repos, gateway).update_status(
            lead.id, "QUALIFIED", None, seeded["workspace"].id
        )

        assert updated.status == LeadStatus.QUALIFIED
        whatsapp = await repos["activities"].get_by_lead_id(lead.id, type=ActivityType.WHATSAPP)
        assert len(whatsapp) == 1
        assert whatsapp[0].subject == "WhatsApp failed via qualified_welcome"
        assert "provider down" in whatsapp[0].description

    async def test_rejected_send_is_recorded(self, seeded, repos, fake_gateway):
        lead = await self._lead_with_trigger(seeded, repos)
        gateway = fake_gateway
        gateway.result = DispatchResult(False, "Invalid campaign")

        await _lead_service(repos, gateway).update_status(lead.id, "QUALIFIED", None, seeded["workspace"].id)

        whatsapp = await repos["activities"].get_by_lead_id(lead.id, type=ActivityType.WHATSAPP)
        assert whatsapp[0].description == "Failed to send WhatsApp to 919876543210: Invalid campaign"

    async def test_disabled_trigger_does_nothing(self, seeded, repos, fake_gateway):
        lead = await self._lead_with_trigger(seeded, repos)
        await repos["rules"].upsert_trigger(seeded["workspace"].id, "QUALIFIED", is_enabled=False)
        gateway = fake_gateway

        await _lead_service(repos, gateway).update_status(lead.id, "QUALIFIED", None, seeded["workspace"].id)

        assert gateway.calls == []
        assert await repos["activities"].get_by_lead_id(lead.id, type=ActivityType.WHATSAPP) == []

    async def test_unchanged_status_is_a_no_op(self, seeded, repos, fake_gateway):
        lead = await self._lead_with_trigger(seeded, repos, status="NEW_LEAD")
        gateway = fake_gateway

        await _lead_service(repos, gateway).update_status(lead.id, "NEW", None, seeded["workspace"].id)

        assert gateway.calls == []
        assert await repos["activities"].get_by_lead_id(lead.id, type=ActivityType.STATUS_CHANGE) == []

    async def test_converted_sets_timestamp(self, seeded, repos, fake_gateway):
        lead = await self._lead_with_trigger(seeded, repos)

        updated = await _lead_service(repos, fake_gateway).update_status(
            lead.id, "CONVERTED", None, seeded["workspace"].id
        )

        assert updated.category == LeadCategory.CLOSED
        assert updated.converted_at is not None

    async def test_notifier_database_failure_keeps_status_change(
        self, seeded, repos, fake_gateway, session_factory
    ):
        ws = seeded["workspace"]
        lead = await self._lead_with_trigger(seeded, repos)
        db = repos["leads"].db
        await db.commit()
        notifier = StatusChangeNotifier(
            repos["rules"], repos["leads"], SubjectlessActivityRepository(db), repos["workspaces"], fake_gateway,
            renderer=TemplateRenderer(), default_country_code="91",
        )
        service = LeadService(repos["leads"], repos["activities"], repos["workspaces"], notifier)

        updated = await service.update_status(lead.id, "QUALIFIED", seeded["agent_a"].id, ws.id)

        assert updated.status == LeadStatus.QUALIFIED
        assert len(fake_gateway.calls) == 1
        # Commit the way the request dependency does
        await db.commit()

        async with session_factory() as session:
            stored = await LeadRepository(session).get_by_id(lead.id, workspace_id=ws.id)
            activity_types = [a.type for a in await ActivityRepository(session).get_by_lead_id(lead.id)]
        assert stored.status == LeadStatus.QUALIFIED
        assert stored.category == LeadCategory.ACTIVE
        assert activity_types.count(ActivityType.STATUS_CHANGE) == 1
        assert ActivityType.WHATSAPP not in activity_types

    async def test_unknown_lead(self, seeded, repos, fake_gateway):
        with pytest.raises(NotFoundError):
            await _lead_service(repos, fake_gateway).update_status(
                123456, "QUALIFIED", None, seeded["workspace"].id
            )
