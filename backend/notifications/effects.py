"""Deferred side effects: collected during a state change, dispatched afterwards.

Business operations return a list of effects instead of notifying inline.
``EffectDispatcher`` runs them once the state change is flushed; each effect
fails on its own, is logged, and never propagates to the caller.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import NotificationType
from backend.notifications.email import EmailService
from backend.notifications.service import NotificationService
from backend.notifications.templates import RenderedEmail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEffect:
    recipient_id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    link: Optional[str] = None


@dataclass(frozen=True)
class EmailEffect:
    to: str
    email: RenderedEmail


Effect = Union[NotificationEffect, EmailEffect]


class EffectDispatcher:
    """Best-effort executor for notification and email effects."""

    def __init__(self, db: AsyncSession, email_service: Optional[EmailService] = None) -> None:
        self.db = db
        self.email_service = email_service or EmailService()

    async def dispatch(self, effects: Sequence[Effect]) -> int:
        """Run every effect; returns how many were delivered."""
        delivered = 0
        for effect in effects:
            if isinstance(effect, NotificationEffect):
                ok = await self._notify(effect)
            else:
                ok = await self._email(effect)
            delivered += int(ok)
        return delivered

    async def _notify(self, effect: NotificationEffect) -> bool:
        try:
            async with self.db.begin_nested():
                await NotificationService.create_notification(
                    self.db,
                    recipient_id=effect.recipient_id,
                    type=effect.type,
                    title=effect.title,
                    message=effect.message,
                    link=effect.link,
                )
        except SQLAlchemyError:
            logger.warning(
                "Notification %r for %s could not be stored",
                effect.title, effect.recipient_id, exc_info=True,
            )
            return False
        return True

    async def _email(self, effect: EmailEffect) -> bool:
        try:
            sent = await self.email_service.send(
                effect.to, effect.email.subject, effect.email.html, effect.email.text,
            )
        except Exception:
            logger.warning("Email to %s failed", effect.to, exc_info=True)
            return False
        if not sent:
            logger.warning("Email to %s was not accepted by the provider", effect.to)
        return sent
