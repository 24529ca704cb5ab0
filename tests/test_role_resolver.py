import pytest

from app.services.role_resolver import ADMIN, USER, resolve_role


@pytest.mark.auth
class TestResolveRole:
    """Role resolution from explicit requests and the admin allow-lists."""

    @pytest.mark.parametrize(
        "email,openid",
        [
            (None, None),
            ("someone@example.com", None),
            (None, "o-unknown"),
            ("boss@firm.example", "o-admin"),
        ],
    )
    def test_explicit_admin_request_always_wins(self, monkeypatch, email, openid):
        monkeypatch.setenv("ADMIN_EMAILS", "boss@firm.example")
        monkeypatch.setenv("ADMIN_WECHAT_OPENIDS", "o-admin")

        assert resolve_role(email, openid, requested_role="admin") == ADMIN

    @pytest.mark.parametrize(
        "email",
        ["boss@firm.example", "BOSS@Firm.Example", "  boss@firm.example  "],
    )
    def test_allow_listed_email_is_admin(self, monkeypatch, email):
        monkeypatch.setenv("ADMIN_EMAILS", "ops@firm.example, boss@firm.example")

        assert resolve_role(email) == ADMIN

    def test_unlisted_email_is_user(self, monkeypatch):
        monkeypatch.setenv("ADMIN_EMAILS", "boss@firm.example")

        assert resolve_role("client@example.com") == USER
        assert resolve_role(None) == USER

    def test_allow_list_separators(self, monkeypatch):
        monkeypatch.setenv("ADMIN_EMAILS", "a@x.com;b@x.com c@x.com,\nd@x.com")

        for email in ("a@x.com", "b@x.com", "c@x.com", "d@x.com"):
            assert resolve_role(email) == ADMIN

    def test_openid_match_is_exact(self, monkeypatch):
        monkeypatch.setenv("ADMIN_WECHAT_OPENIDS", "oAbC123")

        assert resolve_role(None, "oAbC123") == ADMIN
        assert resolve_role(None, "oabc123") == USER

    def test_requested_user_role_does_not_grant_admin(self):
        assert resolve_role("client@example.com", None, requested_role="user") == USER

    def test_allow_list_is_read_on_every_call(self, monkeypatch):
        assert resolve_role("late@firm.example") == USER

        monkeypatch.setenv("ADMIN_EMAILS", "late@firm.example")

        assert resolve_role("late@firm.example") == ADMIN
