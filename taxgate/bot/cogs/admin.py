"""
taxgate.bot.cogs.admin — /taxconfig Admin Commands
====================================================

Slash command group for server admins:
- /taxconfig show — summary of the active configuration
- /taxconfig set — change one field (new version)
- /taxconfig history — recent versions
- /taxconfig revert — copy an old version into a new one
- /taxconfig reload — drop the cached snapshot
- /taxconfig apitoken — bearer token for the admin HTTP API

All commands require the configured admin_role_id.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import discord
from discord import app_commands
from discord.ext import commands

from taxgate.api.tokens import issue_admin_token, load_jwt_secret
from taxgate.database.engine import run_db
from taxgate.engine.tax_config import BOOLEAN_FIELDS, NUMERIC_BOUNDS, validate_updates

if TYPE_CHECKING:
    from taxgate.bot.core import TaxGateBot

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 10
ACTIVE_MARK = "\U0001f7e2"
INACTIVE_MARK = "⚪"


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: TaxGateBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


def parse_field_value(raw: str) -> Any:
    """Turn the text an admin typed into a JSON-ish value.

    ``"true"``/``"false"`` → bool, numbers → int/float, JSON arrays and
    objects are decoded, anything else stays a string (and will be
    rejected by validation).
    """
    text = raw.strip()
    lowered = text.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    try:
        return json.loads(text)
    except ValueError:
        return text


class Admin(commands.Cog, name="Admin"):
    """Points configuration management."""

    taxconfig = app_commands.Group(
        name="taxconfig", description="View and edit the $TAX configuration.",
    )

    def __init__(self, bot: TaxGateBot) -> None:
        self.bot = bot

    @taxconfig.command(name="show", description="Show the active $TAX configuration.")
    @is_admin()
    async def show(self, interaction: discord.Interaction) -> None:
        summary = await run_db(self.bot.store.get_config_summary)
        await interaction.response.send_message(summary, ephemeral=True)

    @taxconfig.command(name="set", description="Change one configuration field.")
    @app_commands.describe(
        field="Field name, e.g. welcome_bonus",
        value="New value (numbers, true/false, or JSON for tables)",
    )
    @is_admin()
    async def set_field(self, interaction: discord.Interaction, field: str, value: str) -> None:
        parsed = parse_field_value(value)
        if field not in validate_updates({field: parsed}):
            await interaction.response.send_message(
                f"⚠️ `{field}` = `{value}` was rejected (unknown field, out of range "
                "or wrong type). Nothing was changed.",
                ephemeral=True,
            )
            return
        config = await run_db(
            self.bot.store.update_config, {field: parsed}, interaction.user.id,
        )
        applied = config.to_dict().get(field)
        logger.info(
            "Admin %s set %s=%r (v%d)", interaction.user.id, field, parsed, config.version,
        )
        await interaction.response.send_message(
            f"✅ `{field}` = `{applied}` (configuration v{config.version})",
            ephemeral=True,
        )

    @set_field.autocomplete("field")
    async def _field_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        names = sorted([*NUMERIC_BOUNDS, *BOOLEAN_FIELDS])
        return [
            app_commands.Choice(name=n, value=n)
            for n in names if current.lower() in n
        ][:25]

    @taxconfig.command(name="history", description="List recent configuration versions.")
    @is_admin()
    async def history(self, interaction: discord.Interaction) -> None:
        versions = await run_db(self.bot.store.get_config_history, HISTORY_LIMIT)
        if not versions:
            await interaction.response.send_message("No configuration history.", ephemeral=True)
            return
        lines = [
            f"{ACTIVE_MARK if v.is_active else INACTIVE_MARK} **v{v.version}** — "
            f"{v.last_updated:%Y-%m-%d %H:%M} UTC"
            + (f" by <@{v.updated_by}>" if v.updated_by else "")
            for v in versions
            if v.last_updated is not None
        ]
        await interaction.response.send_message("\n".join(lines), ephemeral=True)

    @taxconfig.command(name="revert", description="Restore an older configuration version.")
    @app_commands.describe(version="Version number to copy")
    @is_admin()
    async def revert(self, interaction: discord.Interaction, version: int) -> None:
        try:
            config = await run_db(
                self.bot.store.revert_to_version, version, interaction.user.id,
            )
        except LookupError:
            await interaction.response.send_message(
                f"❌ Version {version} does not exist.", ephemeral=True,
            )
            return
        await interaction.response.send_message(
            f"↩️ Reverted to v{version} — now active as v{config.version}.",
            ephemeral=True,
        )

    @taxconfig.command(name="reload", description="Drop the cached configuration.")
    @is_admin()
    async def reload(self, interaction: discord.Interaction) -> None:
        self.bot.points_service.clear_config_cache()
        await interaction.response.send_message("\U0001f504 Configuration cache cleared.", ephemeral=True)

    @taxconfig.command(name="apitoken", description="Get a 12-hour token for the admin HTTP API.")
    @is_admin()
    async def apitoken(self, interaction: discord.Interaction) -> None:
        try:
            secret = load_jwt_secret()
        except RuntimeError:
            logger.warning("API token requested but JWT_SECRET is not usable")
            await interaction.response.send_message(
                "❌ The admin API is not configured on this bot.", ephemeral=True,
            )
            return
        token = issue_admin_token(secret, interaction.user.id, interaction.user.name)
        logger.info("Issued admin API token to %s", interaction.user.id)
        await interaction.response.send_message(
            f"\U0001f511 Bearer token (valid 12 hours, keep it private):\n`{token}`",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Error handler for missing admin role
    # -------------------------------------------------------------------
    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await interaction.response.send_message(
                "\U0001f512 You need the Admin role to use this command.",
                ephemeral=True,
            )
        else:
            raise error


async def setup(bot: TaxGateBot) -> None:
    await bot.add_cog(Admin(bot))
