"""
TemplateRenderer - substitutes ``{{Key}}`` placeholders in trigger params.

Resolution per token: lead field (if non-empty) -> trigger fallback (if
non-empty) -> built-in default. Only a closed set of keys is understood;
any other token is returned unchanged so that it shows up in the sent
message instead of silently vanishing.
"""
from datetime import date
from typing import Any, Callable, Mapping, Sequence

from app.core.config import settings

# Placeholder key -> lead attribute (None: fallback/default only)
LEAD_FIELD_BY_KEY: dict[str, str | None] = {
    "FirstName": "first_name",
    "Phone": "phone",
    "Email": "email",
    "Source": "source",
    "CourseInterested": "course_interested",
    "FeedbackLink": None,
    "Amount": None,
    "Date": None,
}

DEFAULT_VALUES: dict[str, str] = {
    "FirstName": "User",
    "Phone": "",
    "Email": "N/A",
}


def _strip_braces(token: str) -> str:
    return token.replace("{{", "").replace("}}", "").strip()


def _lead_value(lead: Any, attr: str) -> str:
    if isinstance(lead, Mapping):
        value = lead.get(attr)
    else:
        value = getattr(lead, attr, None)
    if value is None:
        return ""
    # Enum members render as their value
    value = getattr(value, "value", value)
    return str(value)


class TemplateRenderer:
    def __init__(
        self,
        defaults: Mapping[str, str] | None = None,
        date_format: str | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.defaults = dict(DEFAULT_VALUES if defaults is None else defaults)
        self.date_format = date_format or settings.TEMPLATE_DATE_FORMAT
        self.today = today

    def render(
        self,
        template_params: Sequence[str],
        lead: Any,
        fallbacks: Mapping[str, Any] | None = None,
    ) -> list[str]:
        fallbacks = fallbacks or {}
        return [self._render_token(token, lead, fallbacks) for token in template_params]

    def _render_token(self, token: str, lead: Any, fallbacks: Mapping[str, Any]) -> str:
        token = str(token)
        key = _strip_braces(token)
        if key not in LEAD_FIELD_BY_KEY:
            return token

        attr = LEAD_FIELD_BY_KEY[key]
        if attr is not None:
            value = _lead_value(lead, attr)
            if value:
                return value

        fallback = fallbacks.get(key)
        if fallback:
            return str(fallback)

        if key == "Date":
            return self.today().strftime(self.date_format)
        return self.defaults.get(key, "")


_default_renderer = TemplateRenderer()


def render(template_params: Sequence[str], lead: Any, fallbacks: Mapping[str, Any] | None = None) -> list[str]:
    """Render with the default configuration."""
    return _default_renderer.render(template_params, lead, fallbacks)
