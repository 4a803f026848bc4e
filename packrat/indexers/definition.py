"""
Declarative index definitions.

An index is described entirely by data: its capabilities, category table,
login method, search paths and response layout. Adding an index means
adding a definition file, never a subclass.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from packrat.errors import DefinitionError
from packrat.search.types import Protocol, SearchType

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib


class CategoryMapping(BaseModel):
    id: str
    cat: Union[int, str]
    desc: str = ""
    default: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        return str(value)


class CapabilitiesBlock(BaseModel):
    modes: Dict[SearchType, List[str]] = Field(
        default_factory=lambda: {SearchType.BASIC: ["q"]},
        description="Search types the index answers, with the parameters each accepts",
    )
    categories: List[CategoryMapping] = Field(default_factory=list)


class NoAuth(BaseModel):
    method: Literal["none"] = "none"


class CookieAuth(BaseModel):
    method: Literal["cookie"]
    test_path: str = ""


class ApiKeyAuth(BaseModel):
    method: Literal["api_key"]
    param: str = "apikey"
    header: str = ""


class PasskeyAuth(BaseModel):
    method: Literal["passkey"]
    param: str = "passkey"


class FormAuth(BaseModel):
    method: Literal["form"]
    path: str
    inputs: Dict[str, str] = Field(default_factory=dict)
    error_text: str = ""
    test_path: str = ""
    logged_out_markers: List[str] = Field(default_factory=lambda: ["login.php", "loginform", "name=\"password\""])


class BasicAuth(BaseModel):
    method: Literal["basic"]


IndexAuth = Annotated[
    Union[NoAuth, CookieAuth, ApiKeyAuth, PasskeyAuth, FormAuth, BasicAuth],
    Field(discriminator="method"),
]


class KeywordFilter(BaseModel):
    name: str
    args: List[Union[str, int]] = Field(default_factory=list)


class SearchPath(BaseModel):
    path: str
    method: str = "GET"
    categories: List[str] = Field(
        default_factory=list,
        description="Native categories this path serves; a leading '!' turns the list into an exclusion",
    )
    inputs: Dict[str, str] = Field(default_factory=dict)
    inheritinputs: bool = True

    @field_validator("categories", mode="before")
    @classmethod
    def _coerce_categories(cls, value: object) -> object:
        if isinstance(value, list):
            return [str(item) for item in value]
        return value

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"GET", "POST"}:
            raise ValueError(f"Unsupported search method '{value}'")
        return normalized


class ResponseBlock(BaseModel):
    type: Literal["json", "torznab"] = "torznab"
    rows: str = ""
    fields: Dict[str, str] = Field(default_factory=dict)


class SearchBlock(BaseModel):
    paths: List[SearchPath]
    inputs: Dict[str, str] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    keywordsfilters: List[KeywordFilter] = Field(default_factory=list)
    allow_empty_inputs: bool = False
    response: ResponseBlock = Field(default_factory=ResponseBlock)


class IndexDefinition(BaseModel):
    id: str
    name: str
    description: str = ""
    protocol: Protocol = Protocol.TORRENT
    links: List[str]
    encoding: str = "utf-8"
    request_delay: Optional[float] = None
    request_limit: Optional[int] = None
    caps: CapabilitiesBlock = Field(default_factory=CapabilitiesBlock)
    login: IndexAuth = Field(default_factory=NoAuth)
    search: SearchBlock

    @field_validator("links")
    @classmethod
    def _require_link(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("Index definition needs at least one link")
        return value

    @property
    def base_url(self) -> str:
        return self.links[0]


def load_definition(path: Path) -> IndexDefinition:
    """Load and validate one TOML index definition."""
    if not path.exists():
        raise DefinitionError(f"Index definition not found: {path}")
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise DefinitionError(f"Index definition {path} is not valid TOML: {e}") from e
    try:
        return IndexDefinition(**data)
    except ValidationError as e:
        raise DefinitionError(f"Index definition {path} is invalid: {e}") from e
