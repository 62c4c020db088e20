"""Template rendering seam.

Template storage and authoring are outside the pipeline; the in-memory
renderer covers tests and simple deployments.
"""

import threading
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from infrastructure.logging import get_module_logger
from modules.notify.domain import ChannelCode, RenderedTemplate

logger = get_module_logger()

DIGEST_TEMPLATE_KEY = "notification.digest"


class TemplateRenderer(Protocol):
    def render(
        self,
        template_key: str,
        variables: Mapping[str, Any],
        channel: ChannelCode,
        locale: Optional[str] = None,
    ) -> Optional[RenderedTemplate]:
        """Render template_key for channel, or None when no template exists."""
        ...


class _BlankDefault(dict):
    """Mapping that renders unknown placeholders as empty strings."""

    def __missing__(self, key):
        return ""


def _format(text: Optional[str], variables: Mapping[str, Any]) -> Optional[str]:
    if text is None:
        return None
    return text.format_map(_BlankDefault(variables))


class InMemoryTemplateRenderer:
    """Templates keyed by (template_key, channel, locale).

    Lookup falls back from the requested locale to the default locale, then
    from the channel-specific template to the any-channel template.
    Placeholders use ``str.format`` syntax; missing variables render blank.

    Example:
        renderer = InMemoryTemplateRenderer()
        renderer.add(
            "order.approved",
            RenderedTemplate(subject="Order {order_id}", body_text="Approved."),
        )
    """

    def __init__(self, default_locale: str = "en"):
        self.default_locale = default_locale
        self._templates: Dict[Tuple[str, Optional[ChannelCode], str], RenderedTemplate] = {}
        self._lock = threading.Lock()

    def add(
        self,
        template_key: str,
        template: RenderedTemplate,
        channel: Optional[ChannelCode] = None,
        locale: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._templates[(template_key, channel, locale or self.default_locale)] = (
                template.model_copy(deep=True)
            )

    def render(
        self,
        template_key: str,
        variables: Mapping[str, Any],
        channel: ChannelCode,
        locale: Optional[str] = None,
    ) -> Optional[RenderedTemplate]:
        template = self._lookup(template_key, channel, locale or self.default_locale)
        if template is None:
            logger.info(
                "template_not_found",
                template_key=template_key,
                channel=channel.value,
                locale=locale,
            )
            return None

        try:
            return RenderedTemplate(
                subject=_format(template.subject, variables),
                body_text=_format(template.body_text, variables),
                body_html=_format(template.body_html, variables),
                body_json=template.body_json,
            )
        except (AttributeError, IndexError, KeyError, ValueError) as e:
            logger.warning(
                "template_render_failed", template_key=template_key, error=str(e)
            )
            return None

    def _lookup(
        self, template_key: str, channel: ChannelCode, locale: str
    ) -> Optional[RenderedTemplate]:
        with self._lock:
            for candidate_locale in dict.fromkeys((locale, self.default_locale)):
                for candidate_channel in (channel, None):
                    template = self._templates.get(
                        (template_key, candidate_channel, candidate_locale)
                    )
                    if template is not None:
                        return template
        return None
