"""Template rendering in a locked-down Jinja2 sandbox.

Templates are stored in the database and edited by administrators, so
they render in a ``SandboxedEnvironment``. ``StrictUndefined`` turns a
reference to missing entity data into an error instead of an empty
string; the worker treats that error as permanent.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import jinja2
from jinja2.sandbox import SandboxedEnvironment

from cadence.core.errors import TemplateError

from .models import NotificationTemplate, RenderedNotification

logger = logging.getLogger(__name__)

_SANDBOX = SandboxedEnvironment(
    undefined=jinja2.StrictUndefined,
    autoescape=False,
    enable_async=False,
    keep_trailing_newline=True,
)


def render_string(source: str, data: Mapping[str, Any]) -> str:
    """Render one template string.

    Raises:
        TemplateError: On a syntax error, an undefined variable or a
            sandbox violation
    """
    try:
        return _SANDBOX.from_string(source).render(**data)
    except jinja2.TemplateError as exc:
        logger.warning("Template render error: %s", exc)
        raise TemplateError(f"template rendering failed: {exc}", cause=exc) from exc


def render_notification(template: NotificationTemplate, data: Mapping[str, Any]) -> RenderedNotification:
    """Render subject and body with the same entity data."""
    context = dict(data)
    return RenderedNotification(
        subject=render_string(template.subject, context).strip(),
        body=render_string(template.body, context),
    )


__all__ = ["render_string", "render_notification"]
