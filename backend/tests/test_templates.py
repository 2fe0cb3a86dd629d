"""
Tests for the notification template engine and the welcome notifier.
"""

import pytest

from directory.client import DirectoryError, DirectoryErrorCode
from notifications.templates import NotificationTemplate, TemplateEngine, TemplateError
from notifications.welcome import WelcomeNotifier


WELCOME_VARS = {
    "email": "cb.dvictoria@awscommunity.mx",
    "temp_password": "Tmp!Pass-1234567",
    "domain": "awscommunity.mx",
    "organization_name": "AWS Community MX",
    "contact_name": "David",
}


class TestTemplateEngine:
    """Test placeholder rendering"""

    @pytest.fixture
    def engine(self):
        return TemplateEngine()

    def test_simple_placeholders(self, engine):
        assert engine.render_string("Hi {{name}}!", {"name": "Ana"}) == "Hi Ana!"

    def test_nested_values(self, engine):
        assert engine.render_string("{{account.email}}", {"account": {"email": "a@b.mx"}}) == "a@b.mx"

    def test_default_values(self, engine):
        template = 'Hello {{contact_name | default:"there"}}'

        assert engine.render_string(template, {}) == "Hello there"
        assert engine.render_string(template, {"contact_name": ""}) == "Hello there"
        assert engine.render_string(template, {"contact_name": "Ana"}) == "Hello Ana"

    def test_missing_value_renders_empty(self, engine):
        assert engine.render_string("[{{missing}}]", {}) == "[]"

    def test_escape(self, engine):
        assert engine.render_string("{{x}}", {"x": "<b>"}, escape=True) == "&lt;b&gt;"

    def test_extract_placeholders(self, engine):
        assert engine.extract_placeholders("{{ a }} and {{b.c}}") == ["a", "b.c"]

    def test_welcome_template(self, engine):
        """Test the welcome message carries the address and password"""
        message = engine.render("welcome", WELCOME_VARS)

        assert message.subject == "Your AWS Community MX Email Has Been Created"
        assert "Hello David!" in message.text
        assert "cb.dvictoria@awscommunity.mx" in message.text
        assert "Tmp!Pass-1234567" in message.text
        assert "<code>Tmp!Pass-1234567</code>" in message.html

    def test_html_body_is_escaped(self, engine):
        message = engine.render("welcome", {**WELCOME_VARS, "contact_name": "<script>"})

        assert "<script>" not in message.html
        assert "&lt;script&gt;" in message.html
        assert "Hello <script>!" in message.text

    def test_missing_required_variable(self, engine):
        variables = dict(WELCOME_VARS)
        del variables["temp_password"]

        with pytest.raises(TemplateError, match="temp_password"):
            engine.render("welcome", variables)

    def test_unknown_template(self, engine):
        with pytest.raises(TemplateError):
            engine.render("goodbye", WELCOME_VARS)

    def test_custom_templates(self):
        engine = TemplateEngine({"ping": NotificationTemplate(subject="Ping {{n}}", text="{{n}}", required=("n",))})

        message = engine.render("ping", {"n": 1})
        assert message.subject == "Ping 1"
        assert message.html is None


class TestWelcomeNotifier:
    """Test delivery through the directory mailer"""

    @pytest.mark.asyncio
    async def test_send(self, directory, config):
        await WelcomeNotifier(directory, config).send(
            "david@example.com", "cb.dvictoria@awscommunity.mx", "Tmp!Pass-1234567", contact_name="David"
        )

        assert len(directory.sent) == 1
        sent = directory.sent[0]
        assert sent["to"] == "david@example.com"
        assert "Tmp!Pass-1234567" in sent["body"]
        assert sent["html"]

    @pytest.mark.asyncio
    async def test_delivery_failure_propagates(self, directory, config):
        directory.fail("send_mail")

        with pytest.raises(DirectoryError) as exc_info:
            await WelcomeNotifier(directory, config).send("david@example.com", "x@awscommunity.mx", "pw")
        assert exc_info.value.code == DirectoryErrorCode.UPSTREAM
