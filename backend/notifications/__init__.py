from .templates import (
    TemplateEngine,
    TemplateError,
    NotificationTemplate,
    RenderedMessage,
    get_template_engine,
)
from .welcome import WelcomeNotifier

__all__ = [
    'TemplateEngine',
    'TemplateError',
    'NotificationTemplate',
    'RenderedMessage',
    'get_template_engine',
    'WelcomeNotifier',
]
