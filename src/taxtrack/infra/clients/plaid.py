from __future__ import annotations

import http.client
import json
import os
from typing import Any, Literal, Self, TypedDict, cast
import urllib.error
import urllib.request

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from taxtrack.models.external import ExternalTransaction, RemovedTransaction, SyncDelta

PlaidEnv = Literal["sandbox", "development", "production"]


class PlaidClientError(Exception):
    """Base error for Plaid client failures.

    ``error_code`` and ``error_message`` hold Plaid's own values when the
    API returned a structured error body.
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.error_message = error_message or message


PLAID_ENV_MAP: dict[PlaidEnv, str] = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}


class PlaidAccount(TypedDict):
    account_id: str
    name: str
    official_name: str | None
    mask: str | None
    subtype: str | None
    type: str | None


class PlaidItemInfo(TypedDict):
    item_id: str
    institution_id: str | None
    institution_name: str | None
    institution_logo: str | None


class PlaidBaseModel(BaseModel):
    """Shared base for Plaid response models with a short parse alias."""

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class LinkTokenCreateResponse(PlaidBaseModel):
    link_token: str


class PublicTokenExchangeResponse(PlaidBaseModel):
    access_token: str
    item_id: str


class AccountsGetAccount(PlaidBaseModel):
    account_id: str
    name: str
    official_name: str | None = None
    mask: str | None = None
    subtype: str | None = None
    type: str | None = None

    def to_typed(self) -> PlaidAccount:
        return {
            "account_id": self.account_id,
            "name": self.name,
            "official_name": self.official_name,
            "mask": self.mask,
            "subtype": self.subtype,
            "type": self.type,
        }


class AccountsGetResponse(PlaidBaseModel):
    accounts: list[AccountsGetAccount]


class ItemModel(PlaidBaseModel):
    item_id: str
    institution_id: str | None = None


class ItemGetResponse(PlaidBaseModel):
    item: ItemModel


class InstitutionModel(PlaidBaseModel):
    name: str | None = None
    logo: str | None = None


class InstitutionGetByIdResponse(PlaidBaseModel):
    institution: InstitutionModel | None = None


class PlaidErrorBody(PlaidBaseModel):
    error_code: str | None = None
    error_message: str | None = None
    error_type: str | None = None


class TransactionsSyncResponse(PlaidBaseModel):
    added: list[dict[str, Any]] = Field(default_factory=list)
    modified: list[dict[str, Any]] = Field(default_factory=list)
    removed: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False

    def to_sync_delta(self, *, fallback_cursor: str | None) -> SyncDelta:
        """Coerce raw Plaid records into typed external records."""
        return SyncDelta(
            added=[ExternalTransaction.parse(txn) for txn in self.added],
            modified=[ExternalTransaction.parse(txn) for txn in self.modified],
            removed=[RemovedTransaction.parse(item) for item in self.removed],
            next_cursor=self.next_cursor or (fallback_cursor or ""),
            has_more=self.has_more,
        )


class PlaidClient:
    def __init__(
        self,
        *,
        client_id: str,
        secret: str,
        env: PlaidEnv = "sandbox",
        client_name: str = "taxtrack",
        products: list[str] | None = None,
    ) -> None:
        self._client_id = client_id
        self._secret = secret
        self._env = env
        self._client_name = client_name
        self._products = products or ["transactions"]

    @property
    def env(self) -> PlaidEnv:
        return self._env

    @classmethod
    def from_env(cls) -> PlaidClient:
        """Construct a PlaidClient from environment variables.

        Required:
        - PLAID_CLIENT_ID
        - PLAID_ENV (defaults to sandbox)
        - PLAID_<ENV>_SECRET (e.g. PLAID_SANDBOX_SECRET)
        """
        env_str = os.getenv("PLAID_ENV", "sandbox").lower()
        if env_str not in PLAID_ENV_MAP:
            raise PlaidClientError(
                f"Invalid PLAID_ENV={env_str!r}. "
                "Expected one of: sandbox, development, production."
            )
        env: PlaidEnv = env_str  # type: ignore[assignment]

        client_id = cls._getenv_or_die("PLAID_CLIENT_ID")
        secret = cls._getenv_or_die(f"PLAID_{env.upper()}_SECRET")
        client_name = os.getenv("PLAID_CLIENT_NAME", "taxtrack")
        return cls(client_id=client_id, secret=secret, env=env, client_name=client_name)

    @staticmethod
    def _getenv_or_die(name: str) -> str:
        value = os.getenv(name)
        if not value:
            raise PlaidClientError(f"Missing required environment variable: {name}")
        return value

    def _base_url(self) -> str:
        try:
            return PLAID_ENV_MAP[self._env]
        except KeyError as e:
            raise PlaidClientError(
                f"Unsupported Plaid environment: {self._env!r}"
            ) from e

    def _auth(self) -> dict[str, Any]:
        return {"client_id": self._client_id, "secret": self._secret}

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        try:
            return cast(dict[str, Any], json.loads(body))
        except json.JSONDecodeError as e:
            raise PlaidClientError(
                f"Failed to parse Plaid response as JSON: {e}: {body}"
            ) from e

    @staticmethod
    def _error_from_body(status: int, body: str) -> PlaidClientError:
        """Build a PlaidClientError, keeping Plaid's error code verbatim."""
        try:
            parsed = PlaidErrorBody.parse(json.loads(body))
        except (json.JSONDecodeError, PydanticValidationError):
            return PlaidClientError(f"Plaid API error ({status}): {body}")
        return PlaidClientError(
            f"Plaid API error ({status}): {parsed.error_code}",
            error_code=parsed.error_code,
            error_message=parsed.error_message or body,
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._base_url().rstrip("/") + path
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(  # noqa: S310
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(req) as resp:  # noqa: S310 - external HTTPS
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:  # pragma: no cover - network-dependent
            err_body = e.read().decode("utf-8", "ignore")
            raise self._error_from_body(e.code, err_body) from e
        except urllib.error.URLError as e:  # pragma: no cover - network-dependent
            raise PlaidClientError(
                f"Network error calling Plaid API: {e}", error_code="NETWORK_ERROR"
            ) from e
        except http.client.HTTPException as e:
            raise PlaidClientError(
                f"Incomplete response from Plaid API: {e!r}", error_code="NETWORK_ERROR"
            ) from e
        except UnicodeDecodeError as e:
            raise PlaidClientError(
                f"Plaid response is not valid UTF-8: {e}", error_code="INVALID_RESPONSE"
            ) from e

        return self._parse_json_response(body)

    # High-level APIs -----------------------------------------------------

    def create_link_token(
        self,
        *,
        user_id: str,
        redirect_uri: str | None = None,
        country_codes: list[str] | None = None,
        language: str = "en",
    ) -> str:
        """Create a Plaid Link token and return it."""
        payload: dict[str, Any] = {
            **self._auth(),
            "client_name": self._client_name,
            "language": language,
            "country_codes": country_codes or ["US"],
            "user": {"client_user_id": user_id},
            "products": self._products,
        }
        if redirect_uri is not None:
            payload["redirect_uri"] = redirect_uri

        resp = LinkTokenCreateResponse.parse(self._post("/link/token/create", payload))
        return resp.link_token

    def exchange_public_token(self, public_token: str) -> PublicTokenExchangeResponse:
        """Exchange a Link public_token for an access_token and item_id."""
        payload = {**self._auth(), "public_token": public_token}
        return PublicTokenExchangeResponse.parse(
            self._post("/item/public_token/exchange", payload)
        )

    def get_accounts(self, access_token: str) -> list[PlaidAccount]:
        """Return accounts for an item using Plaid's /accounts/get endpoint."""
        payload: dict[str, Any] = {**self._auth(), "access_token": access_token}
        resp = AccountsGetResponse.parse(self._post("/accounts/get", payload))
        return [account.to_typed() for account in resp.accounts]

    def get_item_info(self, access_token: str) -> PlaidItemInfo:
        """Return item and institution information for an access token.

        Institution lookup failures are tolerated; only the item call is
        required to succeed.
        """
        payload: dict[str, Any] = {**self._auth(), "access_token": access_token}
        item_resp = ItemGetResponse.parse(self._post("/item/get", payload))

        institution_id = item_resp.item.institution_id
        institution_name: str | None = None
        institution_logo: str | None = None

        if institution_id:
            inst_payload: dict[str, Any] = {
                **self._auth(),
                "institution_id": institution_id,
                "country_codes": ["US"],
                "options": {"include_optional_metadata": True},
            }
            try:
                inst_resp = InstitutionGetByIdResponse.parse(
                    self._post("/institutions/get_by_id", inst_payload)
                )
            except PlaidClientError:
                inst_resp = InstitutionGetByIdResponse()
            if inst_resp.institution:
                institution_name = inst_resp.institution.name
                institution_logo = inst_resp.institution.logo

        return {
            "item_id": item_resp.item.item_id,
            "institution_id": institution_id,
            "institution_name": institution_name,
            "institution_logo": institution_logo,
        }

    def sync_transactions(
        self,
        access_token: str,
        *,
        cursor: str | None = None,
        count: int = 500,
    ) -> SyncDelta:
        """Fetch one page from Plaid's /transactions/sync endpoint.

        Raises:
            PlaidClientError: On API failure or a malformed payload
        """
        payload: dict[str, Any] = {
            **self._auth(),
            "access_token": access_token,
            "count": count,
        }
        if cursor is not None:
            payload["cursor"] = cursor

        try:
            resp = TransactionsSyncResponse.parse(
                self._post("/transactions/sync", payload)
            )
            return resp.to_sync_delta(fallback_cursor=cursor)
        except PydanticValidationError as e:
            raise PlaidClientError(
                f"Malformed /transactions/sync payload: {e}",
                error_code="INVALID_RESPONSE",
            ) from e
