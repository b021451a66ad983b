"""Tests for the (subject, fingerprint) session cache."""

import pytest

from sessionguard.service.errors import InvalidTokenError
from sessionguard.service.session_cache import AuthValueCategory, session_key


def _login_token(tokens, subject_id="u1", ttl=600):
    return tokens.generate_token({"id": subject_id, "token_category": "LOGIN"}, ttl)


class TestSessionBinding:
    async def test_device_scoped_validity_and_logout(self, sessions, tokens):
        t1 = _login_token(tokens)
        await sessions.cache_session("u1", t1, "fpA", 600)

        assert await sessions.is_session_valid("u1", t1, "fpA") is True
        assert await sessions.is_session_valid("u1", t1, "fpB") is False

        await sessions.logout_session("u1", "fpA")

        assert await sessions.is_session_valid("u1", t1, "fpA") is False

    async def test_stores_jti_with_ttl(self, sessions, tokens, cache):
        t1 = _login_token(tokens)
        await sessions.cache_session("u1", t1, "fpA", 600)

        assert await cache.get(session_key("u1", "fpA")) == tokens.extract_token_identifier(t1)
        assert await cache.get_ttl(session_key("u1", "fpA")) == 600

    async def test_newer_token_replaces_older(self, sessions, tokens):
        old = _login_token(tokens)
        new = _login_token(tokens)
        await sessions.cache_session("u1", old, "fpA", 600)
        await sessions.cache_session("u1", new, "fpA", 600)

        assert await sessions.is_session_valid("u1", old, "fpA") is False
        assert await sessions.is_session_valid("u1", new, "fpA") is True

    async def test_other_subject_cannot_use_record(self, sessions, tokens):
        t1 = _login_token(tokens)
        await sessions.cache_session("u1", t1, "fpA", 600)

        assert await sessions.is_session_valid("u2", t1, "fpA") is False

    async def test_record_expires_with_ttl(self, sessions, tokens, clock):
        t1 = _login_token(tokens)
        await sessions.cache_session("u1", t1, "fpA", 60)

        clock.advance(61)

        assert await sessions.is_session_valid("u1", t1, "fpA") is False

    async def test_invalid_token_raises(self, sessions):
        with pytest.raises(InvalidTokenError):
            await sessions.is_session_valid("u1", "invalid.token.here", "fpA")


class TestLogoutAll:
    async def test_removes_every_device(self, sessions, tokens):
        ta, tb = _login_token(tokens), _login_token(tokens)
        await sessions.cache_session("u1", ta, "fpA", 600)
        await sessions.cache_session("u1", tb, "fpB", 600)

        removed = await sessions.logout_all_sessions("u1")

        assert removed == 2
        assert await sessions.is_session_valid("u1", ta, "fpA") is False
        assert await sessions.is_session_valid("u1", tb, "fpB") is False

    async def test_leaves_other_subjects_alone(self, sessions, tokens):
        t1 = _login_token(tokens, "u1")
        t10 = _login_token(tokens, "u10")
        await sessions.cache_session("u1", t1, "fpA", 600)
        await sessions.cache_session("u10", t10, "fpA", 600)

        await sessions.logout_all_sessions("u1")

        assert await sessions.is_session_valid("u10", t10, "fpA") is True

    async def test_no_sessions_is_noop(self, sessions):
        assert await sessions.logout_all_sessions("nobody") == 0

    async def test_glob_characters_in_subject_are_literal(self, sessions, tokens):
        t1 = _login_token(tokens, "u1")
        await sessions.cache_session("u1", t1, "fpA", 600)

        assert await sessions.logout_all_sessions("u*") == 0
        assert await sessions.is_session_valid("u1", t1, "fpA") is True


class TestAuthValues:
    async def test_cache_and_compare(self, sessions):
        await sessions.cache_auth_value("u1", "123456", AuthValueCategory.VERIFICATION, 300)

        assert await sessions.is_auth_value_cached("u1", "123456", AuthValueCategory.VERIFICATION)
        assert not await sessions.is_auth_value_cached("u1", "000000", AuthValueCategory.VERIFICATION)
        assert await sessions.get_cached_auth_value("u1", AuthValueCategory.VERIFICATION) == "123456"

    async def test_categories_are_separate(self, sessions):
        await sessions.cache_auth_value("u1", "abc", AuthValueCategory.VERIFICATION, 300)

        assert (
            await sessions.get_cached_auth_value("u1", AuthValueCategory.BRUTE_FORCE_PROTECTION)
            is None
        )

    async def test_invalidate(self, sessions):
        await sessions.cache_auth_value("u1", "abc", AuthValueCategory.VERIFICATION, 300)
        await sessions.invalidate_cached_auth_value("u1", AuthValueCategory.VERIFICATION)

        assert await sessions.get_cached_auth_value("u1", AuthValueCategory.VERIFICATION) is None


class TestKeyBoundaries:
    @pytest.mark.parametrize("ttl", [0, -1])
    async def test_non_positive_ttl_writes_nothing(self, sessions, tokens, cache, ttl):
        t1 = _login_token(tokens)

        with pytest.raises(ValueError):
            await sessions.cache_session("u1", t1, "fpA", ttl)

        assert await cache.get_ttl(session_key("u1", "fpA")) == -2

    async def test_logout_all_spares_subject_with_colon_suffix(self, sessions, tokens):
        t1 = _login_token(tokens, "u1")
        t_other = _login_token(tokens, "u1:x")
        await sessions.cache_session("u1", t1, "fpA", 600)
        await sessions.cache_session("u1:x", t_other, "fpA", 600)

        assert await sessions.logout_all_sessions("u1") == 1

        assert await sessions.is_session_valid("u1:x", t_other, "fpA") is True
        assert await sessions.is_session_valid("u1", t1, "fpA") is False

    async def test_logout_all_for_colon_subject(self, sessions, tokens):
        t_other = _login_token(tokens, "u1:x")
        await sessions.cache_session("u1:x", t_other, "fpA", 600)

        assert await sessions.logout_all_sessions("u1:x") == 1

    def test_fingerprint_with_separator_rejected(self):
        with pytest.raises(ValueError):
            session_key("u1", "x:fpA")
