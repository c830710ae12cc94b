import pytest

from app.config import Settings


@pytest.mark.parametrize(
    "raw",
    [
        "vip@example.com, ops@example.com",
        '["vip@example.com", "ops@example.com"]',
    ],
)
def test_special_accounts_from_env(monkeypatch, raw):
    monkeypatch.setenv("SPECIAL_ACCOUNT_EMAILS", raw)
    cfg = Settings()
    assert cfg.special_account_emails == ["vip@example.com", "ops@example.com"]
    assert cfg.is_special("OPS@example.com")
    assert not cfg.is_special("someone@example.com")


def test_special_accounts_single_value(monkeypatch):
    monkeypatch.setenv("SPECIAL_ACCOUNT_EMAILS", "vip@example.com")
    assert Settings().special_account_emails == ["vip@example.com"]


def test_special_accounts_empty(monkeypatch):
    monkeypatch.setenv("SPECIAL_ACCOUNT_EMAILS", "")
    assert Settings().special_account_emails == []
