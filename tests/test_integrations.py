"""Tests for the Slack, Resend and OAuth-state integrations.

All HTTP traffic goes through httpx.MockTransport or patched module
functions; nothing here touches the network.
"""

import hashlib
import hmac
import json
from datetime import date
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from zeroed.adapters.email_notifier import ResendEmailNotifier
from zeroed.adapters.slack_notifier import SlackNotifier
from zeroed.bot.slack_commands import handle_slash_command, split_command
from zeroed.config import settings
from zeroed.core.action_service import ActionService
from zeroed.integrations import email as email_mod
from zeroed.integrations.oauth_state import (
    STATE_MAX_AGE_SECONDS,
    OAuthStateError,
    make_state,
    read_state,
)
from zeroed.integrations.slack import format_task, verify_slack_request
from zeroed.ports.notification_port import NotificationError

TODAY = date(2025, 2, 12)


def _mock_client(module_path, handler):
    real_client = httpx.AsyncClient
    transport = httpx.MockTransport(handler)
    return patch(
        f"{module_path}.httpx.AsyncClient",
        lambda **kwargs: real_client(transport=transport, **kwargs),
    )


class TestOAuthState:
    def test_round_trip(self):
        state = make_state(7, now=1_700_000_000)
        assert read_state(state, now=1_700_000_060) == 7

    def test_expired(self):
        state = make_state(7, now=1_700_000_000)
        with pytest.raises(OAuthStateError, match="state_expired"):
            read_state(state, now=1_700_000_000 + STATE_MAX_AGE_SECONDS + 1)

    def test_tampered(self):
        state = make_state(7, now=1_700_000_000)
        other = make_state(8, now=1_700_000_000)
        forged = other.split(".")[0] + "." + state.split(".")[1]
        with pytest.raises(OAuthStateError, match="invalid_state"):
            read_state(forged, now=1_700_000_000)

    @pytest.mark.parametrize("state", [None, "", "nodot", "abc.def"])
    def test_malformed(self, state):
        with pytest.raises(OAuthStateError):
            read_state(state)


def _slack_signature(body: str, timestamp: str) -> str:
    base = f"v0:{timestamp}:{body}".encode()
    return "v0=" + hmac.new(settings.SLACK_SIGNING_SECRET.encode(), base, hashlib.sha256).hexdigest()


class TestSlackVerification:
    def test_valid_signature(self):
        body = "command=%2Fbruh&text=today"
        sig = _slack_signature(body, "1700000000")
        assert verify_slack_request(sig, "1700000000", body.encode(), now=1_700_000_010)

    def test_replayed_request(self):
        body = "text=today"
        sig = _slack_signature(body, "1700000000")
        assert not verify_slack_request(sig, "1700000000", body, now=1_700_000_000 + 301)

    def test_wrong_body_or_missing_headers(self):
        sig = _slack_signature("text=today", "1700000000")
        assert not verify_slack_request(sig, "1700000000", "text=done", now=1_700_000_000)
        assert not verify_slack_request(None, "1700000000", "text=today", now=1_700_000_000)
        assert not verify_slack_request(sig, "soon", "text=today", now=1_700_000_000)

    def test_undecodable_body_and_odd_signature_rejected(self):
        sig = _slack_signature("text=today", "1700000000")
        assert not verify_slack_request(sig, "1700000000", b"text=\xff\xfe", now=1_700_000_000)
        assert not verify_slack_request("v0=é", "1700000000", "text=today", now=1_700_000_000)
        assert not verify_slack_request(sig, "²", "text=today", now=1_700_000_000)


class TestSlashCommand:
    @pytest.fixture
    def service(self, task_db):
        return ActionService(task_db)

    @pytest.fixture
    def connected(self, integration_db, user):
        integration_db.upsert_integration(
            user.id, "slack", "xoxb-token", settings={"slack_user_id": "U123"},
        )
        return user

    def test_split_command(self):
        assert split_command("") == ("today", "")
        assert split_command("  ADD  Buy milk ") == ("add", "Buy milk")

    @pytest.mark.asyncio
    async def test_unknown_slack_user(self, integration_db, task_db, service):
        reply = await handle_slash_command(integration_db, task_db, service, {"user_id": "U999"})
        assert reply["response_type"] == "ephemeral"
        assert "isn't connected" in reply["text"]

    @pytest.mark.asyncio
    async def test_add_creates_task_due_today(self, integration_db, task_db, service, connected):
        reply = await handle_slash_command(
            integration_db, task_db, service, {"user_id": "U123", "text": "add Buy milk"}, today=TODAY,
        )
        assert reply["text"] == "✅ Added: *Buy milk*"
        task = task_db.find_open_by_title(connected.id, "milk")
        assert task.due_date == "2025-02-12"
        assert task.source == "slack"

    @pytest.mark.asyncio
    async def test_done_completes_matching_task(self, integration_db, task_db, service, connected, inbox):
        task_db.create_task(connected.id, inbox.id, "Call the plumber")
        reply = await handle_slash_command(
            integration_db, task_db, service, {"user_id": "U123", "text": "done plumber"},
        )
        assert reply["text"] == "✅ Completed: *Call the plumber*"
        assert task_db.find_open_by_title(connected.id, "plumber") is None

    @pytest.mark.asyncio
    async def test_done_without_match(self, integration_db, task_db, service, connected):
        reply = await handle_slash_command(
            integration_db, task_db, service, {"user_id": "U123", "text": "done nothing"},
        )
        assert reply["text"].startswith("❌ No pending task")

    @pytest.mark.asyncio
    async def test_today_lists_tasks(self, integration_db, task_db, service, connected, inbox):
        task_db.create_task(connected.id, inbox.id, "Stretch", due_date="2025-02-12")
        task_db.create_task(connected.id, inbox.id, "Tomorrow thing", due_date="2025-02-13")
        reply = await handle_slash_command(
            integration_db, task_db, service, {"user_id": "U123", "text": ""}, today=TODAY,
        )
        text = json.dumps(reply["blocks"], ensure_ascii=False)
        assert "Stretch" in text
        assert "Tomorrow thing" not in text

    @pytest.mark.asyncio
    async def test_unknown_subcommand_shows_help(self, integration_db, task_db, service, connected):
        reply = await handle_slash_command(
            integration_db, task_db, service, {"user_id": "U123", "text": "dance"},
        )
        assert reply["blocks"][0]["text"]["text"] == "*Bruh Commands*"

    @pytest.mark.asyncio
    async def test_service_failure_is_reported_not_raised(self, integration_db, task_db, connected):
        broken = AsyncMock()
        broken.create_task.side_effect = RuntimeError("db locked")
        reply = await handle_slash_command(
            integration_db, task_db, broken, {"user_id": "U123", "text": "add x"},
        )
        assert reply["text"] == "❌ Something went wrong. Try again."


class TestSlackFormatting:
    def test_completed_task_has_undo(self, task_db, user, inbox):
        task = task_db.create_task(user.id, inbox.id, "Done already", status="completed")
        block = format_task(task)[0]
        assert block["accessory"]["text"]["text"] == "Undo"
        assert "style" not in block["accessory"]


class TestSlackNotifier:
    @pytest.mark.asyncio
    async def test_prefers_configured_channel(self, integration_db, user):
        integration_db.upsert_integration(
            user.id, "slack", "xoxb", settings={"notification_channel_id": "C1", "slack_user_id": "U1"},
        )
        with patch("zeroed.adapters.slack_notifier.slack.send_message", AsyncMock(return_value={"ok": True})) as send:
            await SlackNotifier(integration_db).send_message(user.id, "hi")
        send.assert_awaited_once_with("xoxb", "C1", "hi", None)

    @pytest.mark.asyncio
    async def test_falls_back_to_dm(self, integration_db, user):
        integration_db.upsert_integration(user.id, "slack", "xoxb", settings={"slack_user_id": "U1"})
        with patch("zeroed.adapters.slack_notifier.slack.send_dm", AsyncMock(return_value={"ok": True})) as dm:
            await SlackNotifier(integration_db).send_message(user.id, "hi")
        dm.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_connected(self, integration_db, user):
        with pytest.raises(NotificationError):
            await SlackNotifier(integration_db).send_message(user.id, "hi")

    @pytest.mark.asyncio
    async def test_slack_error_raises(self, integration_db, user):
        integration_db.upsert_integration(user.id, "slack", "xoxb", settings={"slack_user_id": "U1"})
        failed = AsyncMock(return_value={"ok": False, "error": "channel_not_found"})
        with patch("zeroed.adapters.slack_notifier.slack.send_dm", failed):
            with pytest.raises(NotificationError, match="channel_not_found"):
                await SlackNotifier(integration_db).send_message(user.id, "hi")


class TestEmail:
    def test_html_to_text(self):
        html = "<style>p{}</style><h1>Hi</h1>\n<p>There   you go</p>"
        assert email_mod.html_to_text(html) == "Hi There you go"

    @pytest.mark.asyncio
    async def test_unconfigured_returns_failure(self):
        with patch.object(settings, "RESEND_API_KEY", ""):
            result = await email_mod.send_email("a@example.com", "Hi", "<p>x</p>")
        assert not result.success
        assert result.error == "Email not configured"

    @pytest.mark.asyncio
    async def test_sends_with_text_alternative(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "em_1"})

        with patch.object(settings, "RESEND_API_KEY", "re_test"), _mock_client("zeroed.integrations.email", handler):
            result = await email_mod.send_email("a@example.com", "Hi", "<p>Hello</p>", reply_to="b@example.com")

        assert result.success
        assert result.id == "em_1"
        assert seen[0]["to"] == ["a@example.com"]
        assert seen[0]["text"] == "Hello"
        assert seen[0]["reply_to"] == "b@example.com"

    @pytest.mark.asyncio
    async def test_http_error_is_reported(self):
        with patch.object(settings, "RESEND_API_KEY", "re_test"), _mock_client(
            "zeroed.integrations.email", lambda request: httpx.Response(422, text="bad"),
        ):
            result = await email_mod.send_email("a@example.com", "Hi", "<p>x</p>")
        assert result.error == "HTTP 422"

    @pytest.mark.asyncio
    async def test_notifier_raises_on_failure(self):
        with patch.object(settings, "RESEND_API_KEY", ""):
            with pytest.raises(NotificationError, match="Email not configured"):
                await ResendEmailNotifier().send_email("a@example.com", "Hi", "<p>x</p>")
