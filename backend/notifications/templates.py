"""
Notification Template Engine

Renders notification subjects and bodies from registered templates.

Supports:
- Placeholder replacement: {{email}}
- Nested variables: {{account.email}}
- Default values: {{contact_name | default:"there"}}

Values substituted into HTML bodies are HTML-escaped; plain text bodies are
left as-is.
"""

import html
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationTemplate:
    subject: str
    text: str
    html: Optional[str] = None
    required: tuple = ()


@dataclass
class RenderedMessage:
    subject: str
    text: str
    html: Optional[str] = None


class TemplateError(ValueError):
    pass


WELCOME_TEXT = """Hello {{contact_name | default:"there"}}!

Your @{{domain}} email has been successfully created.

Email: {{email}}
Temporary Password: {{temp_password}}

To get started:
1. Go to https://mail.google.com
2. Sign in with {{email}}
3. Enter the temporary password above
4. You will be prompted to set a new password

Welcome to {{organization_name}}!

Best regards,
{{organization_name}} Team"""

WELCOME_HTML = """<p>Hello {{contact_name | default:"there"}}!</p>
<p>Your @{{domain}} email has been successfully created.</p>
<p><strong>Email:</strong> {{email}}<br>
<strong>Temporary Password:</strong> <code>{{temp_password}}</code></p>
<ol>
<li>Go to <a href="https://mail.google.com">mail.google.com</a></li>
<li>Sign in with {{email}}</li>
<li>Enter the temporary password above</li>
<li>You will be prompted to set a new password</li>
</ol>
<p>Welcome to {{organization_name}}!</p>
<p>Best regards,<br>{{organization_name}} Team</p>"""

TEMPLATES: Dict[str, NotificationTemplate] = {
    "welcome": NotificationTemplate(
        subject="Your {{organization_name}} Email Has Been Created",
        text=WELCOME_TEXT,
        html=WELCOME_HTML,
        required=("email", "temp_password", "domain", "organization_name"),
    ),
}


class TemplateEngine:
    PLACEHOLDER_PATTERN = re.compile(r'\{\{([^}]+)\}\}')
    DEFAULT_PATTERN = re.compile(r'^([^|]+)\s*\|\s*default\s*:\s*["\']([^"\']*)["\']$')

    def __init__(self, templates: Optional[Dict[str, NotificationTemplate]] = None):
        self.templates = dict(TEMPLATES if templates is None else templates)

    def render_string(self, template: str, variables: Dict[str, Any], escape: bool = False) -> str:
        def replace_match(match):
            value = self._resolve_placeholder(match.group(1).strip(), variables)
            return html.escape(value) if escape else value

        return self.PLACEHOLDER_PATTERN.sub(replace_match, template)

    def render(self, template_id: str, variables: Dict[str, Any]) -> RenderedMessage:
        """
        Render a registered template.

        Raises:
            TemplateError: unknown template or a required variable is missing
        """
        template = self.templates.get(template_id)
        if template is None:
            raise TemplateError(f"Unknown template: {template_id}")

        missing = self.missing_variables(template, variables)
        if missing:
            raise TemplateError(f"Missing required variables: {', '.join(missing)}")

        return RenderedMessage(
            subject=self.render_string(template.subject, variables),
            text=self.render_string(template.text, variables),
            html=self.render_string(template.html, variables, escape=True) if template.html else None,
        )

    def missing_variables(self, template: NotificationTemplate, variables: Dict[str, Any]) -> List[str]:
        return [name for name in template.required if self._get_nested_value(name, variables) in (None, "")]

    def extract_placeholders(self, template: str) -> List[str]:
        return [m.strip() for m in self.PLACEHOLDER_PATTERN.findall(template)]

    def _resolve_placeholder(self, placeholder: str, variables: Dict[str, Any]) -> str:
        default_match = self.DEFAULT_PATTERN.match(placeholder)
        if default_match:
            value = self._get_nested_value(default_match.group(1).strip(), variables)
            return str(value) if value not in (None, "") else default_match.group(2)

        value = self._get_nested_value(placeholder, variables)
        return "" if value is None else str(value)

    def _get_nested_value(self, path: str, data: Dict[str, Any]) -> Any:
        """Dot-path lookup: account.email -> data["account"]["email"]"""
        current: Any = data
        for part in path.split('.'):
            if isinstance(current, dict):
                current = current.get(part)
            elif hasattr(current, part):
                current = getattr(current, part)
            else:
                return None
            if current is None:
                return None
        return current


_template_engine: Optional[TemplateEngine] = None


def get_template_engine() -> TemplateEngine:
    global _template_engine
    if _template_engine is None:
        _template_engine = TemplateEngine()
    return _template_engine
