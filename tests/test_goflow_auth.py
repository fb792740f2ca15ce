import pytest

from auth import goflow_auth
from auth.goflow_auth import GoFlowAuth, MagentoAuth


def test_goflow_headers():
    auth = GoFlowAuth(api_key="secret", contact="ops@example.com")

    assert auth.headers() == {
        "Authorization": "Bearer secret",
        "X-Beta-Contact": "ops@example.com",
        "Content-Type": "application/json",
    }
    assert "Content-Type" not in auth.headers(include_content_type=False)


def test_missing_credentials_fail_lazily(monkeypatch):
    monkeypatch.delenv("GOFLOW_API_KEY", raising=False)
    monkeypatch.delenv("MAGENTO_API_KEY", raising=False)

    auth = GoFlowAuth(contact="")
    with pytest.raises(RuntimeError, match="GOFLOW_API_KEY"):
        auth.headers()
    with pytest.raises(RuntimeError, match="MAGENTO_API_KEY"):
        MagentoAuth().headers()


def test_magento_header():
    assert MagentoAuth(api_key="k").headers() == {"X-API-KEY": "k"}


def test_auth_logger_follows_module_path():
    assert goflow_auth.logger.name == "auth.goflow_auth"
