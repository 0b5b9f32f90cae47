from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from cmdbot.context import is_group_chat

AuthRequirement = Callable[[str], "frozenset[str] | None"]
RoleResolver = Callable[[], Awaitable["str | None"]]

ADMIN_ROLES = frozenset({"administrator", "creator"})
# Display order for denial messages.
ROLE_ORDER = ("administrator", "creator")

logger = logging.getLogger("auth")


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    reason: str | None = None


ALLOW = AuthDecision(allowed=True)


def default_policy(chat_type: str) -> frozenset[str] | None:
    if is_group_chat(chat_type):
        return ADMIN_ROLES
    return None


def share_mode_group_policy(share_mode: bool) -> AuthRequirement:
    def requirement(chat_type: str) -> frozenset[str] | None:
        if not is_group_chat(chat_type):
            return None
        # Every participant owns an independent context outside share mode.
        if not share_mode:
            return None
        return ADMIN_ROLES

    return requirement


def _format_roles(roles: frozenset[str]) -> str:
    ordered = [role for role in ROLE_ORDER if role in roles]
    ordered.extend(sorted(role for role in roles if role not in ROLE_ORDER))
    return " or ".join(ordered)


async def authorize(
    requirement: AuthRequirement | None,
    chat_type: str,
    resolve_role: RoleResolver,
) -> AuthDecision:
    if requirement is None:
        return ALLOW
    roles = requirement(chat_type)
    if roles is None:
        return ALLOW
    role = await resolve_role()
    if role is None:
        logger.warning("Chat role resolution failed chat_type=%s", chat_type)
        return AuthDecision(allowed=False, reason="Get chat role failed")
    if role not in roles:
        logger.info("Permission denied role=%s required=%s", role, sorted(roles))
        return AuthDecision(allowed=False, reason=f"Permission denied, need {_format_roles(roles)}")
    return ALLOW
