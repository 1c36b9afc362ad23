"""System and user prompt composition from Jinja2 templates.

System templates ship as package data under ``autotrader/ai/templates``.
The user prompt is a deterministic rendering of the cycle Context.
"""

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateNotFound

from autotrader.logging import get_logger
from autotrader.models import Context

logger = get_logger(__name__)

DEFAULT_TEMPLATE = "default"
BUILTIN_TEMPLATES = ("default", "aggressive", "conservative")
USER_TEMPLATE = "user_prompt.j2"


class PromptBuilder:
    """Renders system prompts by template name and user prompts from a Context."""

    def __init__(self, environment: Environment | None = None) -> None:
        self._env = environment or Environment(
            loader=PackageLoader("autotrader.ai", "templates"),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )

    def available_templates(self) -> list[str]:
        names = self._env.list_templates(extensions=["j2"])
        return sorted(n.removesuffix(".j2") for n in names if not n.startswith("_") and n != USER_TEMPLATE)

    def base_system_prompt(self, template_name: str, btc_eth_leverage: int, altcoin_leverage: int) -> str:
        """Render a named system template, falling back to ``default`` when unknown."""
        name = template_name or DEFAULT_TEMPLATE
        try:
            template = self._env.get_template(f"{name}.j2")
        except TemplateNotFound:
            logger.warning("prompt_template_not_found", template=name, fallback=DEFAULT_TEMPLATE)
            template = self._env.get_template(f"{DEFAULT_TEMPLATE}.j2")
        return template.render(btc_eth_leverage=btc_eth_leverage, altcoin_leverage=altcoin_leverage).strip()

    def system_prompt(
        self,
        context: Context,
        template_name: str = DEFAULT_TEMPLATE,
        custom_prompt: str = "",
        override_base: bool = False,
    ) -> str:
        """Base template, replaced by or extended with the trader's custom text."""
        custom_prompt = custom_prompt.strip()
        if override_base and custom_prompt:
            return custom_prompt

        base = self.base_system_prompt(template_name, context.btc_eth_leverage, context.altcoin_leverage)
        if custom_prompt:
            return f"{base}\n\n# Trader instructions\n\n{custom_prompt}"
        return base

    def user_prompt(self, context: Context) -> str:
        held_minutes = [
            max(0, int((context.timestamp * 1000 - p.update_time) / 60000)) for p in context.positions
        ]
        return self._env.get_template(USER_TEMPLATE).render(ctx=context, held_minutes=held_minutes).strip()
