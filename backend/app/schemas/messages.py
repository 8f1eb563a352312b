"""
Websocket wire messages.

Inbound commands are validated with these models before dispatch; the
outbound models fix the shape of everything the gateway sends.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shared.constants import (
    ACTION_SEARCH_RESULTS,
    ACTION_SERVICE_SEARCH_UPDATE,
    ACTION_STATUS_UPDATE,
    ALL_TARGETS,
    STATUS_SUCCESS,
)


def _known_services(services: list[str]) -> list[str]:
    unknown = [s for s in services if s not in ALL_TARGETS]
    if unknown:
        raise ValueError(f"unknown service(s): {', '.join(unknown)}")
    return list(dict.fromkeys(services))


def _not_blank(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


# ── Inbound ───────────────────────────────────────────────────────────────────

class Command(BaseModel):
    """Envelope: only `action` is required; the rest depends on the action."""
    model_config = ConfigDict(extra="allow")

    action: str


class SetLocationCommand(BaseModel):
    location: str
    services: Optional[list[str]] = None

    @field_validator("location")
    @classmethod
    def _check_location(cls, v):
        return _not_blank(v)

    @field_validator("services")
    @classmethod
    def _check_services(cls, v):
        return None if v is None else _known_services(v)


class RetrySetLocationCommand(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location: str = Field(alias="retryLocation")
    services: list[str] = Field(alias="retryServices", min_length=1)

    @field_validator("location")
    @classmethod
    def _check_location(cls, v):
        return _not_blank(v)

    @field_validator("services")
    @classmethod
    def _check_services(cls, v):
        return _known_services(v)


class SearchCommand(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    search_term: str = Field(alias="searchTerm")

    @field_validator("search_term")
    @classmethod
    def _check_term(cls, v):
        return _not_blank(v)


class AddToCartCommand(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId", min_length=1)
    service: Literal["blinkit", "zepto", "instamart"]


def describe_validation_error(exc: ValidationError) -> str:
    """'searchTerm: Field required' style summary naming the offending field(s)."""
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ())) or "message"
        parts.append(f"{field}: {err.get('msg', 'invalid value')}")
    return "Invalid command: " + "; ".join(parts)


# ── Outbound ──────────────────────────────────────────────────────────────────

class Outbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def wire(self) -> dict:
        """JSON-ready dict; top-level fields left as None are omitted."""
        return {k: v for k, v in self.model_dump(by_alias=True).items() if v is not None}


class StatusUpdate(Outbound):
    action: str = ACTION_STATUS_UPDATE
    step: str
    status: str
    success: Optional[bool] = None
    message: str
    location_results: Optional[list[dict]] = Field(default=None, alias="locationResults")


class ServiceSearchUpdate(Outbound):
    action: str = ACTION_SERVICE_SEARCH_UPDATE
    service: str
    status: str
    message: str
    has_products: bool = Field(default=False, alias="hasProducts")


class SearchResults(Outbound):
    status: str = STATUS_SUCCESS
    action: str = ACTION_SEARCH_RESULTS
    products: dict[str, list[dict[str, Any]]]
    product_count: dict[str, int] = Field(alias="productCount")
    message: str


class CommandReply(Outbound):
    """Generic `{status, action, message}` envelope, also used for errors."""
    status: Literal["success", "error"]
    action: str
    message: str
    service: Optional[str] = None
    product_id: Optional[str] = Field(default=None, alias="productId")
