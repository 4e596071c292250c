"""
Telegram front end for the panel.

Every chat user maps to a panel user through their Telegram id. Errors
raised by the services are shown to the user as plain replies using the
service's own message; storage errors get a generic reply.
"""

import functools
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes

from core.exceptions import (
    AuthenticationError,
    DatabaseError,
    PermissionDeniedError,
    ValidationError,
    VPNManagerError,
)
from core.logging_config import LoggerMixin
from core.role_policy import get_role_limits
from core.types import Role
from service.units import bytes_to_human

TRAFFIC_PERIODS = OrderedDict([
    ("day", 1),
    ("week", 7),
    ("month", 30),
    ("year", 365),
])

GENERIC_ERROR = "Something went wrong. Please try again later."

def replies_errors(func):
    """Render service errors as chat replies instead of failing the update."""
    @functools.wraps(func)
    async def wrapper(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            return await func(self, update, context)
        except DatabaseError as e:
            self.logger.error("Storage error while handling update", handler=func.__name__, error=str(e))
            await self._reply(update, GENERIC_ERROR)
        except VPNManagerError as e:
            await self._reply(update, str(e))
    return wrapper

def aggregate_daily_traffic(samples: List[Dict[str, Any]]) -> "OrderedDict[str, int]":
    """Sum sample bytes per UTC day, in chronological order."""
    days: "OrderedDict[str, int]" = OrderedDict()
    for sample in sorted(samples, key=lambda s: s['timestamp']):
        day = datetime.fromtimestamp(sample['timestamp'], tz=timezone.utc).strftime("%Y-%m-%d")
        days[day] = days.get(day, 0) + sample['bytes']
    return days

class TelegramBot(LoggerMixin):
    def __init__(self, token: str, auth_service, invite_service, vpn_service,
                 user_service, monitor_service) -> None:
        self.token = token
        self.auth_service = auth_service
        self.invite_service = invite_service
        self.vpn_service = vpn_service
        self.user_service = user_service
        self.monitor_service = monitor_service
        self.application: Optional[Application] = None

    def build_application(self) -> Application:
        application = Application.builder().token(self.token).build()
        commands = {
            "start": self.start_command,
            "help": self.help_command,
            "status": self.status_command,
            "invite": self.invite_command,
            "generate": self.generate_command,
            "myinvites": self.myinvites_command,
            "routes": self.routes_command,
            "addroute": self.addroute_command,
            "traffic": self.traffic_command,
            "disconnect": self.disconnect_command,
            "users": self.users_command,
            "config": self.config_command,
        }
        for name, handler in commands.items():
            application.add_handler(CommandHandler(name, handler))
        application.add_handler(CallbackQueryHandler(self.handle_callback))
        return application

    def run(self) -> None:
        """Poll Telegram until interrupted. Blocks the calling thread."""
        self.application = self.build_application()
        self.logger.info("Telegram bot polling started")
        self.application.run_polling(allowed_updates=Update.ALL_TYPES)
        self.logger.info("Telegram bot polling stopped")

    # --- Helpers ---

    async def _reply(self, update: Update, text: str, reply_markup=None) -> None:
        message = update.effective_message
        if message is not None:
            await message.reply_text(text, reply_markup=reply_markup)

    def _current_user(self, update: Update) -> Dict[str, Any]:
        try:
            return self.auth_service.authenticate_with_telegram(update.effective_user.id)
        except AuthenticationError:
            raise AuthenticationError("You are not registered yet. Send /start first.")

    @staticmethod
    def _is_admin(user: Dict[str, Any]) -> bool:
        return user['role'] == Role.ADMIN.value

    # --- Commands ---

    @replies_errors
    async def start_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        tg_user = update.effective_user
        user = self.auth_service.register_user_with_telegram(tg_user.id, tg_user.username or "")
        text = f"Welcome to the VPN panel, {user['username']}!\n\n"
        if self._is_admin(user):
            text += "You are registered as an administrator.\n"
        elif user['invited_by'] is None and user['role'] == Role.VASSAL.value:
            text += "To unlock more features, activate an invite code with /invite <code>.\n"
        text += "\nSend /help for the list of commands."
        await self._reply(update, text)

    @replies_errors
    async def help_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        limits = get_role_limits(user['role'])
        lines = [
            "Available commands:",
            "/status - your account and connection status",
            "/routes - networks routed through the VPN for you",
            "/traffic - your traffic statistics",
            "/config - get your VPN client certificate",
            "/invite <code> - activate an invite code",
            "/disconnect - end your VPN session",
        ]
        if limits.can_add_routes:
            lines.append("/addroute <cidr> [description] - route a network through the VPN")
        if limits.can_manage_invites:
            lines.append("/generate - create an invite code")
            lines.append("/myinvites - list your invite codes")
        if limits.can_manage_users:
            lines.append("/users [id] - manage users")
            lines.append("/disconnect <user_id> - end another user's session")
        await self._reply(update, "\n".join(lines))

    @replies_errors
    async def status_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        info = self.user_service.get_user_info(user['id'])
        connected = user['id'] in self.vpn_service.get_active_connections()
        limit = info['traffic_limit']
        lines = [
            f"User: {info['username']}",
            f"Role: {info['role']}",
            f"Connected: {'yes' if connected else 'no'}",
            f"Traffic used: {bytes_to_human(info['traffic_used'])}",
            f"Traffic limit: {bytes_to_human(limit) if limit else 'unlimited'}",
        ]
        if self._is_admin(user):
            status = self.monitor_service.get_status()
            lines += [
                "",
                f"Server: {status['server_state']}",
                f"Active sessions: {status['active_connections']}",
                f"Total users: {status['total_users']}",
                f"Total traffic: {bytes_to_human(status['total_traffic'])}",
            ]
        await self._reply(update, "\n".join(lines))

    @replies_errors
    async def invite_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        if not context.args:
            await self._reply(update, "Usage: /invite <code>")
            return
        updated = self.invite_service.redeem_invite_code(user['id'], context.args[0])
        await self._reply(update, f"Invite code activated. Your role is now {updated['role']}.")

    @replies_errors
    async def generate_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        invite = self.invite_service.generate_invite_code(user['id'])
        expires = datetime.fromtimestamp(invite['expires_at'], tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        keyboard = InlineKeyboardMarkup([
            [InlineKeyboardButton("Delete", callback_data=f"invite:delete:{invite['code']}")]
        ])
        await self._reply(update, f"New invite code: {invite['code']}\nValid until {expires}", keyboard)

    @replies_errors
    async def myinvites_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        invites = self.invite_service.get_user_invites(user['id'])
        if not invites:
            await self._reply(update, "You have not created any invite codes yet.")
            return
        lines = ["Your invite codes:"]
        for invite in invites:
            if invite['used_by'] is not None:
                state = f"used by user {invite['used_by']}"
            elif self.invite_service.is_valid(invite):
                state = "active"
            else:
                state = "expired"
            lines.append(f"{invite['code']} - {state}")
        await self._reply(update, "\n".join(lines))

    @replies_errors
    async def routes_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        routes = self.vpn_service.resolve_routes(user['id'])
        if not routes:
            await self._reply(update, "No routes are assigned to you.")
            return
        lines = ["Your routes:"]
        buttons = []
        for route in routes:
            description = f" ({route['description']})" if route['description'] else ""
            lines.append(f"{route['network']} [{route['type']}]{description}")
            if route['type'] == 'custom' and route['created_by'] == user['id']:
                buttons.append([InlineKeyboardButton(
                    f"Remove {route['network']}", callback_data=f"route:remove:{route['id']}"
                )])
        await self._reply(update, "\n".join(lines), InlineKeyboardMarkup(buttons) if buttons else None)

    @replies_errors
    async def addroute_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        if not context.args:
            await self._reply(update, "Usage: /addroute <cidr> [description]")
            return
        description = " ".join(context.args[1:])
        route = self.vpn_service.add_custom_route_for_user(user['id'], context.args[0], description)
        await self._reply(
            update,
            f"Route {route['network']} added. It takes effect after the VPN server restarts."
        )

    @replies_errors
    async def traffic_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        self._current_user(update)
        keyboard = InlineKeyboardMarkup([[
            InlineKeyboardButton(period.capitalize(), callback_data=f"traffic:{period}")
            for period in TRAFFIC_PERIODS
        ]])
        await self._reply(update, "Choose a period:", keyboard)

    @replies_errors
    async def disconnect_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        target_id = user['id']
        if context.args:
            if not get_role_limits(user['role']).can_manage_users:
                await self._reply(update, "Only administrators can disconnect other users.")
                return
            try:
                target_id = int(context.args[0])
            except ValueError:
                await self._reply(update, "Usage: /disconnect <user_id>")
                return
        result = self.vpn_service.disconnect_user(target_id)
        await self._reply(update, result['message'])

    @replies_errors
    async def users_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        if context.args:
            try:
                target_id = int(context.args[0])
            except ValueError:
                await self._reply(update, "Usage: /users [user_id]")
                return
            await self._show_user(update, user, target_id)
            return

        users = self.user_service.get_all_users(user['id'])
        lines = [f"Users ({len(users)}):"]
        for entry in users:
            lines.append(f"#{entry['id']} {entry['username']} - {entry['role']}")
        lines.append("\nSend /users <id> to manage a user.")
        await self._reply(update, "\n".join(lines))

    async def _show_user(self, update: Update, actor: Dict[str, Any], target_id: int) -> None:
        if not get_role_limits(actor['role']).can_manage_users:
            raise PermissionDeniedError("Your role is not allowed to manage users")
        info = self.user_service.get_user_info(target_id)
        keyboard = InlineKeyboardMarkup([
            [
                InlineKeyboardButton("Promote", callback_data=f"user:promote:{target_id}"),
                InlineKeyboardButton("Demote", callback_data=f"user:demote:{target_id}"),
            ],
            [
                InlineKeyboardButton("Disconnect", callback_data=f"user:disconnect:{target_id}"),
                InlineKeyboardButton("Delete", callback_data=f"user:delete:{target_id}"),
            ],
        ])
        text = (
            f"#{info['id']} {info['username']}\n"
            f"Role: {info['role']}\n"
            f"Traffic used: {bytes_to_human(info['traffic_used'])}\n"
            f"Traffic limit: {bytes_to_human(info['traffic_limit']) if info['traffic_limit'] else 'unlimited'}"
        )
        await self._reply(update, text, keyboard)

    @replies_errors
    async def config_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = self._current_user(update)
        bundle = self.auth_service.issue_certificate(user['id'])
        message = update.effective_message
        await message.reply_text("Your VPN credentials. Keep the private key secret.")
        await message.reply_document(document=bundle['certificate'].encode(), filename=f"{user['username']}.crt")
        await message.reply_document(document=bundle['private_key'].encode(), filename=f"{user['username']}.key")
        await message.reply_document(document=bundle['ca_certificate'].encode(), filename="ca.crt")

    # --- Callbacks ---

    @replies_errors
    async def handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        await query.answer()
        user = self._current_user(update)
        prefix, _, rest = (query.data or "").partition(":")

        if prefix == "traffic":
            await self._traffic_report(update, user, rest)
        elif prefix == "route":
            action, _, param = rest.partition(":")
            if action != "remove":
                raise ValidationError("action", action, "unknown route action")
            result = self.vpn_service.unassign_route_from_user(user['id'], int(param))
            await self._reply(update, result['message'])
        elif prefix == "invite":
            action, _, code = rest.partition(":")
            if action != "delete":
                raise ValidationError("action", action, "unknown invite action")
            result = self.invite_service.delete_invite_code(user['id'], code)
            await self._reply(update, result['message'])
        elif prefix == "user":
            action, _, param = rest.partition(":")
            await self._user_action(update, user, action, int(param))
        else:
            await self._reply(update, "Unknown action.")

    async def _user_action(self, update: Update, actor: Dict[str, Any], action: str, target_id: int) -> None:
        if action == "promote":
            result = self.user_service.promote_user(actor['id'], target_id)
        elif action == "demote":
            result = self.user_service.demote_user(actor['id'], target_id)
        elif action == "delete":
            result = self.user_service.delete_user(actor['id'], target_id)
        elif action == "disconnect":
            if not get_role_limits(actor['role']).can_manage_users:
                raise PermissionDeniedError("Only administrators can disconnect other users")
            result = self.vpn_service.disconnect_user(target_id)
        else:
            raise ValidationError("action", action, "unknown user action")
        await self._reply(update, result['message'])

    async def _traffic_report(self, update: Update, user: Dict[str, Any], period: str) -> None:
        if period not in TRAFFIC_PERIODS:
            raise ValidationError("period", period, "unknown period")
        to_ts = int(time.time())
        from_ts = to_ts - TRAFFIC_PERIODS[period] * 86400
        samples = self.vpn_service.get_user_traffic(user['id'], from_ts, to_ts)
        daily = aggregate_daily_traffic(samples)
        lines = [f"Traffic for the last {period}: {bytes_to_human(sum(daily.values()))}"]
        for day, total in daily.items():
            lines.append(f"{day}: {bytes_to_human(total)}")
        await self._reply(update, "\n".join(lines))
