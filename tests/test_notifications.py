"""Notification tests: effect dispatch, email delivery, link routing, listing."""

from __future__ import annotations

import json
import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.constants import NotificationType, UserRole
from backend.core_hr.service import DirectoryService
from backend.notifications.effects import EffectDispatcher, EmailEffect, NotificationEffect
from backend.notifications.email import SENDGRID_URL, EmailService
from backend.notifications.models import Notification
from backend.notifications.service import (
    NotificationService,
    approver_link,
    requester_link,
)
from backend.notifications.templates import escalation_email, leave_decision_email
from tests.conftest import headers_for, seed_department, seed_employee


def _email():
    return leave_decision_email(
        employee_name="Rita Pop",
        leave_type="Normal Leave",
        start_date=date(2026, 4, 6),
        end_date=date(2026, 4, 10),
        decision="approved",
        comments=None,
        link="/leave/1",
    )


# ═════════════════════════════════════════════════════════════════════
# Dispatcher
# ═════════════════════════════════════════════════════════════════════


class TestEffectDispatcher:

    async def test_stores_notifications_and_sends_mail(self, db: AsyncSession):
        emp = await seed_employee(db)
        email_service = EmailService(provider="mock")
        dispatcher = EffectDispatcher(db, email_service)

        delivered = await dispatcher.dispatch([
            NotificationEffect(
                recipient_id=emp.id, type=NotificationType.info,
                title="Hello", message="World",
            ),
            EmailEffect(to=emp.email, email=_email()),
        ])

        assert delivered == 2
        stored = await db.scalar(select(func.count(Notification.id)))
        assert stored == 1

    async def test_failed_notification_is_swallowed(self, db: AsyncSession):
        emp = await seed_employee(db)
        dispatcher = EffectDispatcher(db, EmailService(provider="mock"))

        with patch.object(
            NotificationService, "create_notification",
            AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down"))),
        ):
            delivered = await dispatcher.dispatch([
                NotificationEffect(
                    recipient_id=emp.id, type=NotificationType.info,
                    title="Lost", message="Never stored",
                ),
                EmailEffect(to=emp.email, email=_email()),
            ])

        assert delivered == 1

    async def test_failed_email_is_swallowed(self, db: AsyncSession):
        failing = EmailService(provider="mock")
        failing.send = AsyncMock(side_effect=RuntimeError("smtp exploded"))
        dispatcher = EffectDispatcher(db, failing)

        delivered = await dispatcher.dispatch([EmailEffect(to="x@example.com", email=_email())])

        assert delivered == 0


# ═════════════════════════════════════════════════════════════════════
# Email
# ═════════════════════════════════════════════════════════════════════


class TestEmailService:

    async def test_mock_provider_accepts(self):
        assert await EmailService(provider="mock").send("a@example.com", "S", "<p>h</p>", "t")

    async def test_sendgrid_without_key_falls_back_to_mock(self):
        svc = EmailService(provider="sendgrid", api_key="")
        assert svc._determine_provider() == "mock"

    async def test_sendgrid_posts_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(202)

        svc = EmailService(
            provider="sendgrid", api_key="sg-key", from_email="hr@example.com",
            transport=httpx.MockTransport(handler),
        )

        assert await svc.send("rita@example.com", "Subject", "<p>html</p>", "text") is True
        assert captured["url"] == SENDGRID_URL
        assert captured["auth"] == "Bearer sg-key"
        assert captured["body"]["personalizations"][0]["to"][0]["email"] == "rita@example.com"
        assert captured["body"]["from"]["email"] == "hr@example.com"

    async def test_sendgrid_rejection_returns_false(self):
        svc = EmailService(
            provider="sendgrid", api_key="sg-key",
            transport=httpx.MockTransport(lambda request: httpx.Response(400, text="bad")),
        )
        assert await svc.send("rita@example.com", "S", "h", "t") is False

    async def test_transport_error_returns_false(self):
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        svc = EmailService(
            provider="sendgrid", api_key="sg-key", transport=httpx.MockTransport(boom),
        )
        assert await svc.send("rita@example.com", "S", "h", "t") is False


class TestTemplates:

    def test_escalation_email_mentions_both_approvers(self):
        rendered = escalation_email(
            employee_name="Rita Pop",
            leave_type="Normal Leave",
            start_date=date(2026, 4, 6),
            end_date=date(2026, 4, 8),
            days=Decimal("3.0"),
            escalated_from_name="Mihai Ionescu",
            escalated_to_name="Dora Stan",
            escalation_reason="Auto-escalated after 3 business days of inactivity",
            link="/manager/approvals/1",
        )
        assert "escalated to you" in rendered.subject
        assert "Mihai Ionescu" in rendered.text
        assert "3 days" in rendered.text
        assert "/manager/approvals/1" in rendered.html

    def test_decision_email_escapes_html(self):
        rendered = leave_decision_email(
            employee_name="<script>",
            leave_type="Normal Leave",
            start_date=date(2026, 4, 6),
            end_date=date(2026, 4, 6),
            decision="rejected",
            comments="Busy <week>",
            link="/leave/1",
        )
        assert "<script>" not in rendered.html
        assert "Comments: Busy <week>" in rendered.text


# ═════════════════════════════════════════════════════════════════════
# Links and listing
# ═════════════════════════════════════════════════════════════════════


class TestLinks:

    async def test_approver_link_by_role(self, db: AsyncSession):
        request_id = uuid.uuid4()
        hr_dept = await seed_department(db, name="HR Operations", code="HRO")
        hr = await seed_employee(db, role=UserRole.hr)
        exec_ = await seed_employee(db, role=UserRole.executive)
        hr_clerk = await seed_employee(db, department_id=hr_dept.id)
        manager = await seed_employee(db, role=UserRole.manager)
        directory = DirectoryService(db)
        hr_clerk = await directory.get_employee(hr_clerk.id, with_department=True)

        assert approver_link(hr, request_id) == f"/hr?request={request_id}"
        assert approver_link(exec_, request_id) == f"/executive?request={request_id}"
        assert approver_link(hr_clerk, request_id) == f"/hr?request={request_id}"
        assert approver_link(manager, request_id) == f"/manager/approvals/{request_id}"
        assert approver_link(None, request_id) == f"/manager/approvals/{request_id}"

    def test_requester_link(self):
        request_id = uuid.uuid4()
        assert requester_link(request_id) == f"/leave/{request_id}"


class TestNotificationList:

    async def test_list_own_notifications(self, client, db: AsyncSession):
        emp = await seed_employee(db)
        other = await seed_employee(db)
        await NotificationService.create_notification(
            db, recipient_id=emp.id, title="Mine", message="m",
        )
        await NotificationService.create_notification(
            db, recipient_id=other.id, title="Theirs", message="t",
        )
        await db.commit()

        resp = await client.get("/api/v1/notifications", headers=headers_for(emp))

        assert resp.status_code == 200
        assert [n["title"] for n in resp.json()] == ["Mine"]

    async def test_unread_filter(self, db: AsyncSession):
        emp = await seed_employee(db)
        read = await NotificationService.create_notification(
            db, recipient_id=emp.id, title="Old", message="m",
        )
        read.is_read = True
        await NotificationService.create_notification(
            db, recipient_id=emp.id, title="New", message="m",
        )
        await db.flush()

        unread = await NotificationService.list_for_recipient(db, emp.id, unread_only=True)
        assert [n.title for n in unread] == ["New"]
