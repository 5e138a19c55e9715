"""
StatusChangeNotifier - fires the configured WhatsApp trigger when a lead's status changes.

Best effort, at most once: nothing is retried and nothing raised here may
reach the status update that called it. Every attempted dispatch leaves
exactly one WHATSAPP activity, whatever the outcome.
"""
import json
import re
from typing import Any

from app.core.config import settings
from app.core.logging import get_logger
from app.models.activity import ActivityType
from app.repositories.activity_repo import ActivityRepository
from app.repositories.lead_repo import LeadRepository
from app.repositories.rule_repo import RuleRepository
from app.repositories.workspace_repo import WorkspaceRepository
from app.services.notification_service import DispatchResult, WhatsAppGateway
from app.services.template_renderer import TemplateRenderer

logger = get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str | None, country_code: str) -> str:
    """Digits only; bare 10-digit numbers get ``country_code`` prepended."""
    cleaned = _NON_DIGITS.sub("", phone or "")
    if len(cleaned) == 10:
        return f"{country_code}{cleaned}"
    return cleaned


def parse_json_config(raw: str | None, default: Any, *, expected: type, label: str) -> Any:
    """Parse a stored JSON blob, degrading to ``default`` when it is unusable."""
    if not raw:
        return default
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("trigger_config_invalid_json", field=label, error=str(e))
        return default
    if not isinstance(value, expected):
        logger.warning("trigger_config_wrong_shape", field=label, got=type(value).__name__)
        return default
    return value


class StatusChangeNotifier:
    def __init__(
        self,
        rule_repo: RuleRepository,
        lead_repo: LeadRepository,
        activity_repo: ActivityRepository,
        workspace_repo: WorkspaceRepository,
        gateway: WhatsAppGateway,
        renderer: TemplateRenderer | None = None,
        default_country_code: str | None = None,
    ):
        self.rules = rule_repo
        self.leads = lead_repo
        self.activities = activity_repo
        self.workspaces = workspace_repo
        self.gateway = gateway
        self.renderer = renderer or TemplateRenderer()
        self.default_country_code = default_country_code or settings.DEFAULT_COUNTRY_CODE

    async def notify_status_change(self, lead_id: int, user_id: int | None, new_status: str, workspace_id: int) -> None:
        """Dispatch the trigger for ``new_status`` if one is enabled. Never raises.

        Runs in a savepoint so a failed read or activity write only undoes the
        notifier's own work, never the status change that called it.
        """
        try:
            async with self.leads.db.begin_nested():
                await self._notify(lead_id, user_id, new_status, workspace_id)
        except Exception:
            logger.exception(
                "whatsapp_trigger_failed",
                lead_id=lead_id,
                status=new_status,
                workspace_id=workspace_id,
            )

    async def _notify(self, lead_id: int, user_id: int | None, new_status: str, workspace_id: int) -> None:
        trigger = await self.rules.get_trigger(workspace_id, new_status)
        if trigger is None:
            logger.debug("whatsapp_trigger_absent", status=new_status, workspace_id=workspace_id)
            return

        lead = await self.leads.get_by_id(lead_id, workspace_id=workspace_id)
        if lead is None:
            logger.error("whatsapp_trigger_lead_missing", lead_id=lead_id, workspace_id=workspace_id)
            return

        country_code = await self._country_code(workspace_id)
        phone = normalize_phone(lead.phone, country_code)

        template_params = parse_json_config(
            trigger.template_params_json, [], expected=list, label="template_params_json"
        )
        fallbacks = parse_json_config(
            trigger.params_fallback_json, {}, expected=dict, label="params_fallback_json"
        )
        params = self.renderer.render(template_params, lead, fallbacks)

        campaign_name = trigger.campaign_name or ""
        source_label = trigger.source or settings.WHATSAPP_DEFAULT_SOURCE_LABEL

        result = await self._dispatch(phone, campaign_name, source_label, params)

        if result.success:
            description = f"WhatsApp message sent successfully to {phone}"
            logger.info(
                "whatsapp_trigger_sent",
                lead_id=lead_id,
                status=new_status,
                campaign=campaign_name,
                phone=phone,
            )
        else:
            description = f"Failed to send WhatsApp to {phone or '<no phone>'}: {result.raw_response}"
            logger.error(
                "whatsapp_trigger_not_delivered",
                lead_id=lead_id,
                status=new_status,
                campaign=campaign_name,
                response=result.raw_response,
            )

        await self.activities.create(
            workspace_id=workspace_id,
            lead_id=lead_id,
            user_id=user_id,
            type=ActivityType.WHATSAPP,
            subject=f"WhatsApp sent via {campaign_name}" if result.success else f"WhatsApp failed via {campaign_name}",
            description=description,
        )

    async def _dispatch(self, phone: str, campaign_name: str, source_label: str, params: list[str]) -> DispatchResult:
        if not phone:
            return DispatchResult(success=False, raw_response="Lead has no usable phone number")
        try:
            return await self.gateway.send(phone, campaign_name, source_label, params)
        except Exception as e:
            logger.exception("whatsapp_gateway_raised", phone=phone)
            return DispatchResult(success=False, raw_response=f"WhatsApp gateway raised: {e}")

    async def _country_code(self, workspace_id: int) -> str:
        workspace = await self.workspaces.get_by_id(workspace_id)
        if workspace is not None and workspace.default_country_code:
            return workspace.default_country_code
        return self.default_country_code
