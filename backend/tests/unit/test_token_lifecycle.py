"""Tests for the ephemeral token lifecycle manager."""

import asyncio
import string
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from identity.core.errors import ConflictError, NotFoundError
from identity.core.expiry_store import ExpiredEntry
from identity.services.token_lifecycle import (
    EphemeralToken,
    SubjectIndex,
    TokenKind,
    TokenLifecycleManager,
    TokenPolicy,
    generate_token,
    subject_key,
    token_key,
)

_SUBJECT = "2cb9374e-4e52-4142-a1af-16144ef4a27d"
_OTHER_SUBJECT = "3cb9374e-4e52-4142-a1af-16144ef4a27d"


def _expire_all(store, clock, tokens: TokenLifecycleManager, kind: TokenKind) -> None:
    clock.advance(tokens.policy(kind).ttl.total_seconds() + 1)
    store.purge_expired()


class TestGenerateToken:
    def test_length_and_alphabet(self):
        token = generate_token(50)
        assert len(token) == 50
        assert set(token) <= set(string.ascii_letters + string.digits)

    def test_tokens_differ(self):
        assert generate_token(32) != generate_token(32)

    def test_keys(self):
        assert token_key(TokenKind.SESSION, "abc") == "tokens:session:abc"
        assert (
            subject_key(TokenKind.PASSWORD_RESET, "42")
            == "tokens:password_reset:subject:42"
        )


class TestIssue:
    """Tests for issuing tokens per kind policy."""

    @pytest.mark.parametrize(
        ("kind", "length"),
        [
            (TokenKind.PASSWORD_RESET, 50),
            (TokenKind.EMAIL_ACTIVATION, 15),
            (TokenKind.SESSION, 32),
        ],
    )
    async def test_issue_then_lookup(self, tokens, kind, length):
        record = await tokens.issue(_SUBJECT, kind)

        assert len(record.token) == length
        assert record.kind is kind
        assert record.subject == _SUBJECT
        assert await tokens.lookup(record.token, kind) == record

    async def test_expires_at(self):
        issued = datetime(2024, 4, 11, tzinfo=UTC)
        record = EphemeralToken(
            token="t", subject="s", kind=TokenKind.SESSION, issued_at=issued, ttl_ms=90_000
        )
        assert record.expires_at == issued + timedelta(seconds=90)

    async def test_second_reset_token_conflicts(self, tokens):
        """One active reset token per account."""
        first = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)

        with pytest.raises(ConflictError) as exc_info:
            await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)

        assert exc_info.value.code == "PASSWORD_RESET_TOKEN_EXISTS"
        assert exc_info.value.status_code == 409
        assert await tokens.lookup(first.token, TokenKind.PASSWORD_RESET) == first

    async def test_reset_tokens_independent_per_subject(self, tokens):
        await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)
        await tokens.issue(_OTHER_SUBJECT, TokenKind.PASSWORD_RESET)

    async def test_reset_token_reissued_after_expiry(self, tokens, memory_store, clock):
        await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)
        _expire_all(memory_store, clock, tokens, TokenKind.PASSWORD_RESET)

        record = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)

        assert await tokens.lookup(record.token, TokenKind.PASSWORD_RESET) == record

    async def test_conditional_write_decides_the_race(self, tokens, memory_store):
        """Only the request whose conditional write lands gets a token."""
        memory_store.put = AsyncMock(side_effect=[False])

        with pytest.raises(ConflictError):
            await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)

        memory_store.put.assert_awaited_once()
        assert memory_store.put.await_args.kwargs["only_if_absent"] is True

    async def test_activation_token_replaces_previous(self, tokens):
        first = await tokens.issue(_SUBJECT, TokenKind.EMAIL_ACTIVATION)
        second = await tokens.issue(_SUBJECT, TokenKind.EMAIL_ACTIVATION)

        with pytest.raises(NotFoundError):
            await tokens.lookup(first.token, TokenKind.EMAIL_ACTIVATION)
        assert await tokens.find_by_subject(_SUBJECT, TokenKind.EMAIL_ACTIVATION) == second

    async def test_sessions_coexist(self, tokens):
        first = await tokens.issue(_SUBJECT, TokenKind.SESSION)
        second = await tokens.issue(_SUBJECT, TokenKind.SESSION)

        assert await tokens.lookup(first.token, TokenKind.SESSION) == first
        assert await tokens.lookup(second.token, TokenKind.SESSION) == second

    async def test_custom_policy(self, memory_store):
        manager = TokenLifecycleManager(
            memory_store,
            {TokenKind.SESSION: TokenPolicy(length=8, ttl=timedelta(seconds=5))},
        )
        record = await manager.issue(_SUBJECT, TokenKind.SESSION)
        assert len(record.token) == 8
        assert record.ttl_ms == 5_000


class TestLookup:
    """Tests for lookup and subject index reads."""

    async def test_unknown_reset_token_message(self, tokens):
        with pytest.raises(NotFoundError) as exc_info:
            await tokens.lookup("nope", TokenKind.PASSWORD_RESET)
        assert exc_info.value.message == "Password reset token 'nope' is invalid or expired"

    async def test_kinds_do_not_share_tokens(self, tokens):
        record = await tokens.issue(_SUBJECT, TokenKind.SESSION)
        with pytest.raises(NotFoundError):
            await tokens.lookup(record.token, TokenKind.PASSWORD_RESET)

    async def test_expired_token_not_found(self, tokens, clock):
        record = await tokens.issue(_SUBJECT, TokenKind.SESSION)
        clock.advance(tokens.policy(TokenKind.SESSION).ttl.total_seconds())

        with pytest.raises(NotFoundError):
            await tokens.lookup(record.token, TokenKind.SESSION)

    async def test_find_by_subject_without_token(self, tokens):
        assert await tokens.find_by_subject(_SUBJECT, TokenKind.PASSWORD_RESET) is None

    async def test_find_by_subject_unindexed_kind(self, tokens):
        with pytest.raises(ValueError, match="not indexed"):
            await tokens.find_by_subject(_SUBJECT, TokenKind.SESSION)

    def test_policy_index_modes(self, tokens):
        assert tokens.policy(TokenKind.PASSWORD_RESET).subject_index is SubjectIndex.UNIQUE
        assert (
            tokens.policy(TokenKind.EMAIL_ACTIVATION).subject_index
            is SubjectIndex.REPLACE
        )
        assert tokens.policy(TokenKind.SESSION).subject_index is SubjectIndex.NONE


class TestConsume:
    """Tests for single use of a token."""

    async def test_consume_runs_action_then_removes(self, tokens):
        record = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)
        action = AsyncMock()

        consumed = await tokens.consume(
            record.token, TokenKind.PASSWORD_RESET, subject=_SUBJECT, action=action
        )

        assert consumed == record
        action.assert_awaited_once_with(record)
        with pytest.raises(NotFoundError):
            await tokens.lookup(record.token, TokenKind.PASSWORD_RESET)

    async def test_consume_frees_subject_index(self, tokens):
        """After use a new reset token can be issued right away."""
        record = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)
        await tokens.consume(record.token, TokenKind.PASSWORD_RESET)

        await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)

    async def test_subject_mismatch_conflicts(self, tokens):
        record = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)
        action = AsyncMock()

        with pytest.raises(ConflictError) as exc_info:
            await tokens.consume(
                record.token,
                TokenKind.PASSWORD_RESET,
                subject=_OTHER_SUBJECT,
                action=action,
            )

        assert exc_info.value.code == "INVALID_TOKEN_FOR_SUBJECT"
        action.assert_not_awaited()
        assert await tokens.lookup(record.token, TokenKind.PASSWORD_RESET) == record

    async def test_failing_action_keeps_token(self, tokens):
        record = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)

        with pytest.raises(RuntimeError):
            await tokens.consume(
                record.token,
                TokenKind.PASSWORD_RESET,
                action=AsyncMock(side_effect=RuntimeError("db down")),
            )

        assert await tokens.lookup(record.token, TokenKind.PASSWORD_RESET) == record

    async def test_consume_twice(self, tokens):
        record = await tokens.issue(_SUBJECT, TokenKind.SESSION)
        await tokens.consume(record.token, TokenKind.SESSION)

        with pytest.raises(NotFoundError):
            await tokens.consume(record.token, TokenKind.SESSION)

    async def test_concurrent_consumes_run_action_once(self, tokens):
        """Of two simultaneous uses only one succeeds."""
        record = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)

        async def slow_action(_record):
            await asyncio.sleep(0)

        action = AsyncMock(side_effect=slow_action)

        results = await asyncio.gather(
            tokens.consume(record.token, TokenKind.PASSWORD_RESET, action=action),
            tokens.consume(record.token, TokenKind.PASSWORD_RESET, action=action),
            return_exceptions=True,
        )

        assert sum(isinstance(r, EphemeralToken) for r in results) == 1
        assert sum(isinstance(r, NotFoundError) for r in results) == 1
        assert action.await_count == 1

    async def test_restored_token_keeps_remaining_lifetime(
        self, tokens, memory_store, clock
    ):
        record = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)
        ttl = tokens.policy(TokenKind.PASSWORD_RESET).ttl.total_seconds()
        clock.advance(ttl - 10)

        with pytest.raises(ConflictError):
            await tokens.consume(
                record.token, TokenKind.PASSWORD_RESET, subject=_OTHER_SUBJECT
            )
        clock.advance(11)
        memory_store.purge_expired()

        with pytest.raises(NotFoundError):
            await tokens.lookup(record.token, TokenKind.PASSWORD_RESET)

    async def test_removing_stale_token_keeps_successor_index(self, tokens, memory_store):
        """Removing an old token never drops the index of its successor."""
        first = await tokens.issue(_SUBJECT, TokenKind.EMAIL_ACTIVATION)
        second = await tokens.issue(_SUBJECT, TokenKind.EMAIL_ACTIVATION)
        # Old record still readable, as when a request raced the replacement.
        await memory_store.put(
            token_key(TokenKind.EMAIL_ACTIVATION, first.token),
            first.model_dump_json(),
            60_000,
        )

        await tokens.consume(first.token, TokenKind.EMAIL_ACTIVATION)

        assert await tokens.find_by_subject(_SUBJECT, TokenKind.EMAIL_ACTIVATION) == second


class TestRevoke:
    async def test_revoke_active(self, tokens):
        record = await tokens.issue(_SUBJECT, TokenKind.SESSION)
        assert await tokens.revoke(record.token, TokenKind.SESSION) is True
        with pytest.raises(NotFoundError):
            await tokens.lookup(record.token, TokenKind.SESSION)

    async def test_revoke_unknown(self, tokens):
        assert await tokens.revoke("missing", TokenKind.SESSION) is False


class TestExpiry:
    """Tests for store-driven expiry handling."""

    async def test_handler_receives_expired_record(self, tokens, memory_store, clock):
        handler = AsyncMock()
        tokens.on_expiry(TokenKind.EMAIL_ACTIVATION, handler)
        record = await tokens.issue(_SUBJECT, TokenKind.EMAIL_ACTIVATION)

        _expire_all(memory_store, clock, tokens, TokenKind.EMAIL_ACTIVATION)
        await memory_store.drain()

        handler.assert_awaited_once_with(record)

    async def test_handlers_filtered_by_kind(self, tokens, memory_store, clock):
        handler = AsyncMock()
        tokens.on_expiry(TokenKind.PASSWORD_RESET, handler)
        await tokens.issue(_SUBJECT, TokenKind.SESSION)

        _expire_all(memory_store, clock, tokens, TokenKind.SESSION)
        await memory_store.drain()

        handler.assert_not_awaited()

    async def test_consumed_token_never_expires(self, tokens, memory_store, clock):
        handler = AsyncMock()
        tokens.on_expiry(TokenKind.PASSWORD_RESET, handler)
        record = await tokens.issue(_SUBJECT, TokenKind.PASSWORD_RESET)
        await tokens.consume(record.token, TokenKind.PASSWORD_RESET)

        _expire_all(memory_store, clock, tokens, TokenKind.PASSWORD_RESET)
        await memory_store.drain()

        handler.assert_not_awaited()

    async def test_failing_handler_isolated(self, tokens):
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        after = AsyncMock()
        tokens.on_expiry(TokenKind.SESSION, failing)
        tokens.on_expiry(TokenKind.SESSION, after)
        record = EphemeralToken(
            token="abc",
            subject=_SUBJECT,
            kind=TokenKind.SESSION,
            issued_at=datetime.now(UTC),
            ttl_ms=1,
        )

        await tokens.handle_expired(
            ExpiredEntry(key="tokens:session:abc", value=record.model_dump_json())
        )

        after.assert_awaited_once_with(record)

    async def test_foreign_keys_ignored(self, tokens):
        handler = AsyncMock()
        tokens.on_expiry(TokenKind.SESSION, handler)

        await tokens.handle_expired(ExpiredEntry(key="cache:x", value="{}"))

        handler.assert_not_awaited()

    async def test_unreadable_payload_dropped(self, tokens):
        handler = AsyncMock()
        tokens.on_expiry(TokenKind.SESSION, handler)

        await tokens.handle_expired(
            ExpiredEntry(key="tokens:session:abc", value="not json")
        )

        handler.assert_not_awaited()
