import logging

from azure_boot.context import BotContext
from azure_boot.errors import PreflightError
from azure_boot.services.commands import build_application_commands


logger = logging.getLogger(__name__)

# VIEW_CHANNEL | SEND_MESSAGES | USE_APPLICATION_COMMANDS
BOT_PERMISSIONS = (1 << 10) | (1 << 11) | (1 << 31)


def preflight_vms(ctx: BotContext) -> None:
    vms = ctx.settings.vms
    if not vms:
        raise PreflightError("no virtual machines configured")

    missing: list[str] = []
    for vm in vms:
        try:
            ctx.compute.ensure_exists(vm)
        except Exception as exc:  # noqa: BLE001
            missing.append(
                f"{vm.friendly_name} ({vm.resource_group}/{vm.azure_name}): {exc}"
            )
    if missing:
        raise PreflightError(
            "failed to find configured virtual machines: " + "; ".join(missing)
        )
    logger.info("found all %d configured virtual machines", len(vms))


def initialize_discord(ctx: BotContext) -> None:
    """Return once the bot is authenticated and its commands are registered."""

    settings = ctx.settings
    user = ctx.discord.get_current_user()
    logger.info("authenticated with discord as %s", user.get("username"))
    logger.info(
        "invite the bot: https://discord.com/api/oauth2/authorize"
        "?client_id=%s&scope=bot+applications.commands&permissions=%d",
        settings.discord_application_id,
        BOT_PERMISSIONS,
    )

    commands = build_application_commands(settings.vms)
    ctx.discord.overwrite_commands(commands, guild_id=settings.discord_guild_id)
    if settings.discord_guild_id:
        logger.info("registered guild commands for guild %s", settings.discord_guild_id)
    else:
        logger.info("registered global commands")
    if settings.discord_permission_role_id:
        logger.info(
            "restricting commands to members with role %s",
            settings.discord_permission_role_id,
        )
