"""Stored sign-in credentials backed by 1Password.

Lookups are best effort: anything that goes wrong talking to 1Password turns
into a not-found result so the sign-in flow can fall back to manual login.
Saving is explicit and its errors propagate.

Domain matching is deliberately fuzzy. A vault item matches when any
normalized signature of its title or website hosts contains, or is contained
in, a signature derived from the target domain (see ``domain_candidates``).
"""

from __future__ import annotations

import asyncio
import getpass
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Awaitable, Iterable, List, Optional, TypeVar

from mcpkit import __version__
from mcpkit.errors import CredentialStoreError
from mcpkit.schemas import Credentials

logger = logging.getLogger(__name__)

T = TypeVar("T")

INTEGRATION_NAME = "mcpkit"
CREDENTIAL_FIELDS = ("username", "password")


def normalize_signature(value: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", (value or "").lower())


def extract_hostname(value: Optional[str]) -> str:
    if not value:
        return ""
    sanitized = re.sub(r"^https?://", "", value, flags=re.IGNORECASE)
    return re.split(r"[/?#]", sanitized, maxsplit=1)[0].lower()


def domain_candidates(domain: str) -> List[str]:
    """Every spelling of ``domain`` a vault item might be filed under."""
    candidates: List[str] = []

    def add(value: str) -> None:
        for variant in (value, value.replace(".", "_")):
            if variant and variant not in candidates:
                candidates.append(variant)

    add(domain)
    host = extract_hostname(domain)
    add(host)
    bare_host = re.sub(r"^www\.", "", host)
    add(bare_host)

    labels = [label for label in bare_host.split(".") if label]
    if labels:
        add(labels[0])
    if len(labels) > 1:
        add(".".join(labels[-2:]))
        add(labels[-2])
        add(".".join(labels[:-1]))
    return candidates


def domain_signatures(domain: str) -> List[str]:
    signatures: List[str] = []
    for candidate in domain_candidates(domain):
        signature = normalize_signature(candidate)
        if signature and signature not in signatures:
            signatures.append(signature)
    return signatures


def item_matches(title: Optional[str], website_urls: Iterable[str], domain: str) -> bool:
    searchable = [normalize_signature(title)]
    for url in website_urls:
        searchable.append(normalize_signature(extract_hostname(url) or url))
    searchable = [value for value in searchable if value]
    signatures = domain_signatures(domain)
    return any(
        candidate in signature or signature in candidate
        for candidate in searchable
        for signature in signatures
    )


@dataclass(frozen=True)
class CredentialLookup:
    credentials: Optional[Credentials] = None
    reason: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.credentials is not None


def _run_sync(coro: Awaitable[T]) -> T:
    # the SDK is async while the browser flow is sync; give it its own loop
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


def _category_name(value: Any) -> str:
    return str(getattr(value, "value", value) or "").lower()


class OnePasswordStore:
    def __init__(
        self,
        token: str,
        *,
        integration_name: str = INTEGRATION_NAME,
        integration_version: str = f"v{__version__}",
    ):
        if not token:
            raise CredentialStoreError("A 1Password service account token is required.")
        self._token = token
        self.integration_name = integration_name
        self.integration_version = integration_version

    async def _client(self):
        from onepassword.client import Client

        return await Client.authenticate(
            auth=self._token,
            integration_name=self.integration_name,
            integration_version=self.integration_version,
        )

    @staticmethod
    async def _vault_id(client) -> str:
        vaults = await client.vaults.list()
        if not vaults:
            raise CredentialStoreError("No vaults found for this service account.")
        return vaults[0].id

    async def _lookup(self, domain: str) -> CredentialLookup:
        client = await self._client()
        vault_id = await self._vault_id(client)
        items = await client.items.list(vault_id)
        logger.debug("found %s items in 1Password vault", len(items))

        for overview in items:
            if _category_name(overview.category) != "login":
                continue
            websites = [site.url for site in (getattr(overview, "websites", None) or []) if site.url]
            if not item_matches(overview.title, websites, domain):
                continue
            print(f"  • Found matching login item: {overview.title}")
            item = await client.items.get(vault_id, overview.id)
            values = {}
            for field in item.fields or []:
                key = None
                for name in CREDENTIAL_FIELDS:
                    if field.id == name or (field.title or "").lower() == name:
                        key = name
                if key is None:
                    continue
                if field.value:
                    values[key] = field.value
                else:
                    try:
                        values[key] = await client.secrets.resolve(f"op://{vault_id}/{item.id}/{field.id}")
                    except Exception as exc:
                        print(f"⚠️ Unable to resolve {key} for 1Password item \"{item.title}\": {exc}")
            if values.get("username") and values.get("password"):
                return CredentialLookup(Credentials(username=values["username"], password=values["password"]))
        return CredentialLookup(reason=f"No matching login item for {domain}.")

    def lookup(self, domain: str) -> CredentialLookup:
        """Find stored credentials for ``domain``. Never raises."""
        print(f"\n🔍 Checking 1Password for {domain} credentials...")
        try:
            result = _run_sync(self._lookup(domain))
        except Exception as exc:
            logger.debug("1Password lookup failed", exc_info=True)
            print(f"⚠️ Could not read from 1Password: {exc}")
            return CredentialLookup(reason=f"1Password lookup failed: {exc}")
        if result.found:
            print(f"✅ Found credentials in 1Password for {domain}")
        else:
            print(f"ℹ️ No credentials found in 1Password for {domain}")
        return result

    async def _save(self, domain: str, credentials: Credentials) -> None:
        from onepassword import (
            AutofillBehavior,
            ItemCategory,
            ItemCreateParams,
            ItemField,
            ItemFieldType,
            Website,
        )

        client = await self._client()
        vault_id = await self._vault_id(client)
        await client.items.create(
            ItemCreateParams(
                title=domain,
                category=ItemCategory.LOGIN,
                vault_id=vault_id,
                fields=[
                    ItemField(
                        id="username",
                        title="username",
                        field_type=ItemFieldType.TEXT,
                        value=credentials.username,
                    ),
                    ItemField(
                        id="password",
                        title="password",
                        field_type=ItemFieldType.CONCEALED,
                        value=credentials.password,
                    ),
                ],
                websites=[
                    Website(
                        url=f"https://{domain}",
                        label="website",
                        autofill_behavior=AutofillBehavior.ANYWHEREONWEBSITE,
                    )
                ],
            )
        )

    def save(self, domain: str, credentials: Credentials) -> None:
        print("\n💾 Saving credentials to 1Password...")
        try:
            _run_sync(self._save(domain, credentials))
        except CredentialStoreError:
            raise
        except Exception as exc:
            raise CredentialStoreError(f"Failed to save credentials to 1Password: {exc}") from exc
        print(f"✅ Credentials saved to 1Password as \"{domain}\"")


def prompt_for_credentials(domain: str, read_input=input, read_secret=getpass.getpass) -> Credentials:
    print(f"\n🔐 Please provide credentials for {domain}:")
    username = read_input("Username or email: ").strip()
    if not username:
        raise CredentialStoreError("Username is required.")
    password = read_secret("Password: ")
    if not password:
        raise CredentialStoreError("Password is required.")
    return Credentials(username=username, password=password)
