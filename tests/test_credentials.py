from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

LINEAR_URLS = ["https://linear.app/login"]


@pytest.mark.parametrize("domain", ["linear.app", "www.linear.app", "app.linear.app", "https://linear.app"])
def test_linear_item_matches_linear_domains(domain: str) -> None:
    from mcpkit.credentials import item_matches

    assert item_matches("Linear", LINEAR_URLS, domain)


def test_unrelated_domain_does_not_match() -> None:
    from mcpkit.credentials import item_matches

    assert not item_matches("Linear", LINEAR_URLS, "github.com")


def test_title_alone_can_match() -> None:
    from mcpkit.credentials import item_matches

    assert item_matches("GitHub (work)", [], "github.com")


def test_domain_candidates_cover_common_spellings() -> None:
    from mcpkit.credentials import domain_candidates

    candidates = domain_candidates("www.news.example.com")

    for expected in ("www.news.example.com", "news.example.com", "news_example_com", "example.com", "example"):
        assert expected in candidates


def test_extract_hostname() -> None:
    from mcpkit.credentials import extract_hostname

    assert extract_hostname("HTTPS://Linear.app/login?next=/") == "linear.app"
    assert extract_hostname("") == ""


def test_store_requires_token() -> None:
    from mcpkit.credentials import OnePasswordStore
    from mcpkit.errors import CredentialStoreError

    with pytest.raises(CredentialStoreError):
        OnePasswordStore("")


class FakeVaults:
    def __init__(self, ids: List[str]) -> None:
        self.ids = ids

    async def list(self) -> List[Any]:
        return [SimpleNamespace(id=vault_id) for vault_id in self.ids]


class FakeItems:
    def __init__(self, items: Dict[str, Any]) -> None:
        self.items = items
        self.fetched: List[str] = []

    async def list(self, vault_id: str) -> List[Any]:  # noqa: ARG002
        return [
            SimpleNamespace(
                id=item.id,
                title=item.title,
                category=SimpleNamespace(value=item.category),
                websites=[SimpleNamespace(url=url) for url in item.urls],
            )
            for item in self.items.values()
        ]

    async def get(self, vault_id: str, item_id: str) -> Any:  # noqa: ARG002
        self.fetched.append(item_id)
        return self.items[item_id]


class FakeSecrets:
    def __init__(self, values: Dict[str, str]) -> None:
        self.values = values
        self.refs: List[str] = []

    async def resolve(self, ref: str) -> str:
        self.refs.append(ref)
        return self.values[ref]


def _item(item_id: str, title: str, urls: List[str], username: str, password: str, category: str = "Login") -> Any:
    return SimpleNamespace(
        id=item_id,
        title=title,
        category=category,
        urls=urls,
        fields=[
            SimpleNamespace(id="username", title="username", value=username),
            SimpleNamespace(id="password", title="password", value=password),
        ],
    )


def _install_client(monkeypatch: pytest.MonkeyPatch, client: Any) -> None:
    from mcpkit.credentials import OnePasswordStore

    async def fake_client(self):  # noqa: ANN001,ARG001
        return client

    monkeypatch.setattr(OnePasswordStore, "_client", fake_client)


def test_lookup_finds_matching_login_item(monkeypatch: pytest.MonkeyPatch) -> None:
    from mcpkit.credentials import OnePasswordStore

    items = FakeItems(
        {
            "note": _item("note", "Linear recovery codes", [], "x", "y", category="SecureNote"),
            "gh": _item("gh", "GitHub", ["https://github.com"], "octo", "cat"),
            "lin": _item("lin", "Linear", LINEAR_URLS, "ada@example.com", "hunter2"),
        }
    )
    client = SimpleNamespace(vaults=FakeVaults(["v1"]), items=items, secrets=FakeSecrets({}))
    _install_client(monkeypatch, client)

    result = OnePasswordStore("ops_token").lookup("app.linear.app")

    assert result.found
    assert result.credentials.username == "ada@example.com"
    assert result.credentials.password == "hunter2"
    assert items.fetched == ["lin"]


def test_lookup_resolves_empty_fields_by_secret_reference(monkeypatch: pytest.MonkeyPatch) -> None:
    from mcpkit.credentials import OnePasswordStore

    items = FakeItems({"lin": _item("lin", "Linear", LINEAR_URLS, "ada", "")})
    secrets = FakeSecrets({"op://v1/lin/password": "s3cret"})
    client = SimpleNamespace(vaults=FakeVaults(["v1"]), items=items, secrets=secrets)
    _install_client(monkeypatch, client)

    result = OnePasswordStore("ops_token").lookup("linear.app")

    assert result.credentials.password == "s3cret"
    assert secrets.refs == ["op://v1/lin/password"]


def test_lookup_without_match_is_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    from mcpkit.credentials import OnePasswordStore

    items = FakeItems({"lin": _item("lin", "Linear", LINEAR_URLS, "ada", "pw")})
    client = SimpleNamespace(vaults=FakeVaults(["v1"]), items=items, secrets=FakeSecrets({}))
    _install_client(monkeypatch, client)

    result = OnePasswordStore("ops_token").lookup("github.com")

    assert not result.found
    assert "github.com" in result.reason


@pytest.mark.parametrize("vaults", [[], None])
def test_lookup_errors_become_not_found(monkeypatch: pytest.MonkeyPatch, vaults: Any) -> None:
    from mcpkit.credentials import OnePasswordStore

    if vaults is None:
        async def broken_client(self):  # noqa: ANN001,ARG001
            raise RuntimeError("invalid service account token")

        monkeypatch.setattr(OnePasswordStore, "_client", broken_client)
    else:
        client = SimpleNamespace(vaults=FakeVaults(vaults), items=FakeItems({}), secrets=FakeSecrets({}))
        _install_client(monkeypatch, client)

    result = OnePasswordStore("ops_token").lookup("linear.app")

    assert not result.found
    assert result.reason.startswith("1Password lookup failed")


def test_save_wraps_sdk_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    from mcpkit.credentials import OnePasswordStore
    from mcpkit.errors import CredentialStoreError
    from mcpkit.schemas import Credentials

    async def failing_save(self, domain, credentials):  # noqa: ANN001,ARG001
        raise RuntimeError("vault is read-only")

    monkeypatch.setattr(OnePasswordStore, "_save", failing_save)

    with pytest.raises(CredentialStoreError) as excinfo:
        OnePasswordStore("ops_token").save("linear.app", Credentials(username="ada", password="pw"))
    assert str(excinfo.value) == "Failed to save credentials to 1Password: vault is read-only"


def test_save_success(monkeypatch: pytest.MonkeyPatch) -> None:
    from mcpkit.credentials import OnePasswordStore
    from mcpkit.schemas import Credentials

    saved: List[tuple] = []

    async def fake_save(self, domain, credentials):  # noqa: ANN001,ARG001
        saved.append((domain, credentials.username))

    monkeypatch.setattr(OnePasswordStore, "_save", fake_save)
    OnePasswordStore("ops_token").save("linear.app", Credentials(username="ada", password="pw"))

    assert saved == [("linear.app", "ada")]


def test_credentials_repr_hides_password() -> None:
    from mcpkit.schemas import Credentials

    creds = Credentials(username="ada", password="hunter2")

    assert "hunter2" not in repr(creds)
    assert "hunter2" not in str(creds)
    assert "ada" in repr(creds)


def test_prompt_for_credentials() -> None:
    from mcpkit.credentials import prompt_for_credentials
    from mcpkit.errors import CredentialStoreError

    creds = prompt_for_credentials("linear.app", read_input=lambda _p: " ada ", read_secret=lambda _p: "pw")
    assert (creds.username, creds.password) == ("ada", "pw")

    with pytest.raises(CredentialStoreError, match="Password is required"):
        prompt_for_credentials("linear.app", read_input=lambda _p: "ada", read_secret=lambda _p: "")
