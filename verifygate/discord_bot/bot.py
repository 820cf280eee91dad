#!/usr/bin/env python3
"""
Verification Gateway - Discord Bot

- `!auth` posts the persistent "認証する" button (once per channel)
- The button answers privately with a link into the OAuth2 flow
- Slash commands let administrators manage the ban list, role names,
  log channels and the post-verification return URL
- `!return <url>` is the prefix form of /setreturnurl, `ping` or `!ping` a liveness check
"""
from typing import Any, Optional

import discord
from discord import app_commands
from discord.ext import commands

from verifygate.config_store import ConfigStore
from verifygate.discord_bot.commands import (
    ADMIN_ONLY_MESSAGE,
    ALREADY_POSTED_MESSAGE,
    run_operator_command,
    should_post_verify_control,
)
from verifygate.discord_bot.notifier import Notifier
from verifygate.utils.config_validator import Settings
from verifygate.utils.logger import get_logger

logger = get_logger("bot")

AUTH_BUTTON_ID = "auth_button"
VERIFY_PROMPT = "以下のボタンから認証を開始してください👇"
LINK_PROMPT = "以下のボタンから認証を行ってください。"
PONG = "🏓 Pong!"


def is_admin(member: Any) -> bool:
    """Administrator capability of a guild member; plain users have none."""
    permissions = getattr(member, "guild_permissions", None)
    return bool(permissions is not None and permissions.administrator)


# =============================================================================
# VIEWS
# =============================================================================

class VerifyView(discord.ui.View):
    """Persistent view holding the verification button."""

    def __init__(self, destination_url: str):
        super().__init__(timeout=None)
        self.destination_url = destination_url

    @discord.ui.button(label="認証する", style=discord.ButtonStyle.primary, custom_id=AUTH_BUTTON_ID)
    async def start_verification(self, interaction: discord.Interaction, button: discord.ui.Button):
        link_view = discord.ui.View()
        link_view.add_item(discord.ui.Button(label="🔗 認証ページを開く", url=self.destination_url))

        await interaction.response.send_message(LINK_PROMPT, view=link_view, ephemeral=True)
        logger.info(
            f"✅ {interaction.user} が認証ボタンを押しました",
            extra={"user_id": interaction.user.id, "guild_id": interaction.guild_id},
        )


def is_verify_control(message: discord.Message) -> bool:
    """Whether a message carries the verification button (or its prompt text)."""
    for row in getattr(message, "components", None) or ():
        for child in getattr(row, "children", ()):
            if getattr(child, "custom_id", None) == AUTH_BUTTON_ID:
                return True
    return message.content == VERIFY_PROMPT


async def post_verify_control(
    channel: discord.abc.Messageable,
    bot_user_id: int,
    view: discord.ui.View,
    before: Optional[discord.abc.Snowflake] = None,
) -> bool:
    """
    Post the verification button unless the newest message in the channel
    (ignoring ``before`` and anything after it) is already our control.
    """
    last_author_id, last_is_control = None, False
    async for message in channel.history(limit=1, before=before):
        last_author_id = message.author.id
        last_is_control = is_verify_control(message)

    if not should_post_verify_control(last_author_id, bot_user_id, last_is_control):
        return False

    await channel.send(content=VERIFY_PROMPT, view=view)
    return True


# =============================================================================
# BOT
# =============================================================================

class VerifyGateBot(commands.Bot):

    def __init__(self, settings: Settings, store: ConfigStore):
        intents = discord.Intents.default()
        intents.message_content = True

        super().__init__(command_prefix="!", intents=intents, case_insensitive=True, help_command=None)
        self.settings = settings
        self.store = store
        self.notifier = Notifier(self)

        _register_prefix_commands(self)
        _register_slash_commands(self)

    async def setup_hook(self) -> None:
        # Re-attach the button handler to controls posted before a restart
        self.add_view(VerifyView(self.settings.verify_destination))

        try:
            synced = await self.tree.sync()
            logger.info(f"✅ Synced {len(synced)} slash command(s)")
        except discord.HTTPException as e:
            logger.error(f"❌ Failed to sync commands: {e}")

    async def on_ready(self):
        logger.info(
            f"🎉 {self.user} が起動しました！",
            extra={"bot_id": self.user.id, "guilds": len(self.guilds)},
        )

    async def on_message(self, message: discord.Message):
        if message.author.bot:
            return
        if message.content.strip().lower() == "ping":
            await message.channel.send(PONG)
            return
        await self.process_commands(message)

    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, (commands.NoPrivateMessage, commands.MissingRequiredArgument)):
            await ctx.reply(f"⚠️ {error}")
            return
        logger.error(f"Command {ctx.command} failed: {error}", exc_info=error)


# =============================================================================
# PREFIX COMMANDS
# =============================================================================

def _register_prefix_commands(bot: VerifyGateBot) -> None:

    @bot.command(name="ping")
    async def ping(ctx: commands.Context):
        """Test command to check if bot is responding"""
        await ctx.send(PONG)

    @bot.command(name="auth")
    @commands.guild_only()
    async def auth(ctx: commands.Context):
        """Post the verification button in this channel."""
        if not is_admin(ctx.author):
            await ctx.reply(ADMIN_ONLY_MESSAGE)
            return

        posted = await post_verify_control(
            ctx.channel,
            bot.user.id,
            VerifyView(bot.settings.verify_destination),
            before=ctx.message,
        )
        if not posted:
            await ctx.reply(ALREADY_POSTED_MESSAGE)
            return
        logger.info("Verification button posted", extra={"channel_id": ctx.channel.id})

    @bot.command(name="return")
    @commands.guild_only()
    async def return_url(ctx: commands.Context, url: str):
        """Set the post-verification return URL."""
        result = run_operator_command(
            bot.store, "return", is_admin(ctx.author), url, invoker=str(ctx.author.id)
        )
        await ctx.reply(result.message)


# =============================================================================
# SLASH COMMANDS
# =============================================================================

def _register_slash_commands(bot: VerifyGateBot) -> None:

    async def respond(interaction: discord.Interaction, name: str, *args) -> None:
        result = run_operator_command(
            bot.store, name, is_admin(interaction.user), *args, invoker=str(interaction.user.id)
        )
        await interaction.response.send_message(result.message, ephemeral=not result.ok)

    admin_only = app_commands.default_permissions(administrator=True)

    @bot.tree.command(name="setbanguild", description="Ban判定サーバーを追加")
    @app_commands.describe(server="サーバーID")
    @app_commands.guild_only()
    @admin_only
    async def setbanguild(interaction: discord.Interaction, server: str):
        await respond(interaction, "setbanguild", server)

    @bot.tree.command(name="removebanguild", description="Ban判定サーバーを削除")
    @app_commands.describe(server="サーバーID")
    @app_commands.guild_only()
    @admin_only
    async def removebanguild(interaction: discord.Interaction, server: str):
        await respond(interaction, "removebanguild", server)

    @bot.tree.command(name="setbanrole", description="Ban判定用のロール名を設定")
    @app_commands.describe(role="ロール名")
    @app_commands.guild_only()
    @admin_only
    async def setbanrole(interaction: discord.Interaction, role: str):
        await respond(interaction, "setbanrole", role)

    @bot.tree.command(name="setsuccessrole", description="成功判定用のロール名を設定")
    @app_commands.describe(role="ロール名")
    @app_commands.guild_only()
    @admin_only
    async def setsuccessrole(interaction: discord.Interaction, role: str):
        await respond(interaction, "setsuccessrole", role)

    @bot.tree.command(name="setlogchannel", description="ログチャンネルを設定")
    @app_commands.describe(channel="ログ用チャンネル")
    @app_commands.guild_only()
    @admin_only
    async def setlogchannel(interaction: discord.Interaction, channel: discord.TextChannel):
        await respond(interaction, "setlogchannel", str(channel.id), channel.name)

    @bot.tree.command(name="setlogchannel2", description="2つ目のログチャンネルを設定")
    @app_commands.describe(channel="2つ目のログ用チャンネル")
    @app_commands.guild_only()
    @admin_only
    async def setlogchannel2(interaction: discord.Interaction, channel: discord.TextChannel):
        await respond(interaction, "setlogchannel2", str(channel.id), channel.name)

    @bot.tree.command(name="setreturnurl", description="認証後の戻り先URLを設定")
    @app_commands.describe(url="URL")
    @app_commands.guild_only()
    @admin_only
    async def setreturnurl(interaction: discord.Interaction, url: str):
        await respond(interaction, "setreturnurl", url)

    @bot.tree.command(name="showconfig", description="現在の設定を表示")
    @app_commands.guild_only()
    @admin_only
    async def showconfig(interaction: discord.Interaction):
        await respond(interaction, "showconfig")

    @bot.tree.error
    async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
        if isinstance(error, app_commands.CheckFailure):
            logger.info(f"Slash command refused: {error}", extra={"user_id": interaction.user.id})
            message = ADMIN_ONLY_MESSAGE
        else:
            logger.error(f"Slash command failed: {error}", exc_info=error)
            message = "❌ コマンドの実行に失敗しました"
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)
