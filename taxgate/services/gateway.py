"""
taxgate.services.gateway — Transport Boundary
==============================================

The verification state machine never talks to Discord directly.  It drives
a :class:`GroupGateway`, which the bot implements with discord.py
(:class:`taxgate.bot.gateway.DiscordGateway`) and tests replace with an
``AsyncMock``.

Every method may raise; callers treat each call as a best-effort step.
"""

from __future__ import annotations

from typing import Protocol


class GroupGateway(Protocol):
    async def restrict_member(self, group_id: int, member_id: int) -> None:
        """Stop *member_id* from sending anything in *group_id*."""

    async def restore_member(self, group_id: int, member_id: int) -> None:
        """Give back the normal member permission set."""

    async def remove_member(self, group_id: int, member_id: int) -> None:
        """Remove the member from the group.  Must not be a permanent ban."""

    async def post_challenge(
        self, group_id: int, member_id: int, display_name: str, token: str
    ) -> int | None:
        """Show the challenge prompt; return its message id if one was posted."""

    async def edit_message(self, group_id: int, message_id: int, text: str) -> None:
        ...

    async def delete_message(self, group_id: int, message_id: int) -> None:
        ...
