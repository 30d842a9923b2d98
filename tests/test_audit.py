"""Tests for the audit logging service."""

import logging

import pytest

from authcore.services.audit import AuditAction, AuditService


class TestAuditServiceSanitization:
    """Tests for credential sanitization in audit logs."""

    def test_sanitize_password_field(self, audit):
        sanitized = audit._sanitize_details({"email": "a@example.com", "password": "hunter2"})

        assert sanitized["email"] == "a@example.com"
        assert sanitized["password"] == "[REDACTED - set]"

    def test_sanitize_token_fields(self, audit):
        details = {"access_token": "abc123", "refresh_token": None}
        sanitized = audit._sanitize_details(details)

        assert sanitized["access_token"] == "[REDACTED - set]"
        assert sanitized["refresh_token"] == "[REDACTED - unset]"

    def test_sanitize_nested_details(self, audit):
        details = {"provider": {"name": "google", "client_secret": "shh"}}
        sanitized = audit._sanitize_details(details)

        assert sanitized["provider"]["name"] == "google"
        assert sanitized["provider"]["client_secret"] == "[REDACTED - set]"

    def test_key_matching_is_case_insensitive(self, audit):
        assert audit._sanitize_details({"API_KEY": "k"})["API_KEY"] == "[REDACTED - set]"

    @pytest.mark.parametrize("key", ["X-Api-Key", "x-refresh-token", "Client-Secret", "apikey"])
    def test_hyphenated_keys_are_redacted(self, audit, key):
        assert audit._sanitize_details({key: "k"})[key] == "[REDACTED - set]"


class TestAuditServiceLogging:
    @pytest.mark.asyncio
    async def test_event_is_persisted(self, audit, store):
        entry = await audit.log(
            action=AuditAction.TOKEN_REVOKE,
            resource_type="token",
            resource_id="jti-1",
            user_id="admin-1",
            details={"reason": "security_incident"},
            actor_ip="10.0.0.5",
        )

        assert store.audit_logs == [entry]
        assert entry.action == "token.revoke"
        assert entry.details == {"reason": "security_incident"}

    @pytest.mark.asyncio
    async def test_secrets_never_reach_the_store(self, audit, store):
        await audit.log(
            action=AuditAction.LOGIN_FAILED,
            resource_type="user",
            details={"email": "a@example.com", "password": "hunter2"},
        )
        [entry] = store.audit_logs
        assert "hunter2" not in str(entry.details)

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_fail_the_operation(self, store, caplog):
        store.available = False
        audit = AuditService(store)

        with caplog.at_level(logging.ERROR, logger="authcore.services.audit"):
            entry = await audit.log(action=AuditAction.LOGOUT, resource_type="session")

        assert entry.action == "auth.logout"
        assert "Failed to persist audit event auth.logout" in caplog.text

    @pytest.mark.asyncio
    async def test_warning_level_is_emitted(self, audit, caplog):
        with caplog.at_level(logging.WARNING, logger="authcore.services.audit"):
            await audit.log(
                action=AuditAction.REFRESH_REPLAY,
                resource_type="session",
                resource_id="sess-1",
                level="warning",
            )

        [record] = [r for r in caplog.records if r.name == "authcore.services.audit"]
        assert record.levelno == logging.WARNING
        assert record.audit_action == "auth.refresh_replay"

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, store):
        """Only store errors are absorbed."""

        async def broken(entry):
            raise RuntimeError("bug")

        store.add_audit_log = broken
        with pytest.raises(RuntimeError):
            await AuditService(store).log(action=AuditAction.LOGIN, resource_type="session")
