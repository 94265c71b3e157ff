"""Internal data models for a parsed API description.

The converter turns an OpenAPI document into these models; the classifier
and flow analyzer only ever read them and return updated copies.
"""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer

PATH_PARAM_RE = re.compile(r"\{([^}]+)\}")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ParameterLocation(str, Enum):
    QUERY = "query"
    PATH = "path"
    HEADER = "header"
    COOKIE = "cookie"


class DataCategory(str, Enum):
    PII = "PII"  # email, phone, SSN
    AUTH = "AUTH"  # passwords, tokens, API keys
    FINANCIAL = "FINANCIAL"  # cards, bank accounts
    ADMIN = "ADMIN"  # roles, privileges
    IDENTIFIER = "IDENTIFIER"  # IDs, UUIDs
    PUBLIC = "PUBLIC"
    UNKNOWN = "UNKNOWN"


class SensitivityLevel(str, Enum):
    """Exposure severity, ordered CRITICAL > HIGH > MEDIUM > LOW."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SENSITIVITY_RANK[self.value]

    def __lt__(self, other):
        if not isinstance(other, SensitivityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, SensitivityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, SensitivityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, SensitivityLevel):
            return NotImplemented
        return self.rank >= other.rank


_SENSITIVITY_RANK = {"LOW": 0, "MEDIUM": 1, "HIGH": 2, "CRITICAL": 3}


class SchemaDefinition(_Frozen):
    """A JSON schema node. `ref` keeps the raw `$ref` string, never the target."""

    type: str | None = None
    format: str | None = None
    description: str | None = None
    properties: dict[str, "SchemaDefinition"] | None = None
    required: list[str] | None = None
    items: "SchemaDefinition | None" = None
    enum: list | None = None
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    minimum: float | None = None
    maximum: float | None = None
    ref: str | None = None
    nullable: bool | None = None
    read_only: bool | None = None
    write_only: bool | None = None

    @property
    def ref_name(self) -> str | None:
        """Component name a `$ref` points at, e.g. `#/components/schemas/User` -> `User`."""
        if not self.ref:
            return None
        return self.ref.rsplit("/", 1)[-1]


class MediaTypeDefinition(_Frozen):
    schema_: SchemaDefinition | None = Field(default=None, alias="schema")


class RequestBodyDefinition(_Frozen):
    description: str | None = None
    required: bool = False
    content: dict[str, MediaTypeDefinition] = {}


class ResponseDefinition(_Frozen):
    description: str | None = None
    content: dict[str, MediaTypeDefinition] = {}


class DataClassification(_Frozen):
    """Why a single field was judged sensitive."""

    field_path: str  # dot-separated, e.g. user.profile.email
    category: DataCategory
    sensitivity: SensitivityLevel
    reason: str


class ApiParameter(_Frozen):
    """A single API parameter (query, path, header, or cookie)."""

    name: str
    location: ParameterLocation = ParameterLocation.QUERY
    required: bool = False
    description: str | None = None
    schema_: SchemaDefinition = Field(default_factory=lambda: SchemaDefinition(type="string"), alias="schema")
    deprecated: bool = False
    classification: DataClassification | None = None


class ApiEndpoint(_Frozen):
    """A single operation, identified in practice by (path, method)."""

    path: str  # /api/users/{id}
    method: str  # upper-cased HTTP verb
    operation_id: str | None = None
    summary: str | None = None
    description: str | None = None
    parameters: list[ApiParameter] = []
    request_body: RequestBodyDefinition | None = None
    responses: dict[str, ResponseDefinition] = {}
    security: list[dict[str, list[str]]] = []  # OR of AND-groups
    tags: list[str] = []
    deprecated: bool = False
    data_sensitivity: SensitivityLevel = SensitivityLevel.LOW
    classification: list[DataClassification] = []

    @property
    def key(self) -> str:
        return f"{self.method} {self.path}"

    @property
    def security_scheme_names(self) -> set[str]:
        return {name for requirement in self.security for name in requirement}

    @property
    def path_params(self) -> list[str]:
        return PATH_PARAM_RE.findall(self.path)


class OAuthFlow(_Frozen):
    authorization_url: str | None = None
    token_url: str | None = None
    refresh_url: str | None = None
    scopes: dict[str, str] = {}


class OAuthFlows(_Frozen):
    implicit: OAuthFlow | None = None
    password: OAuthFlow | None = None
    client_credentials: OAuthFlow | None = None
    authorization_code: OAuthFlow | None = None


class SecurityScheme(_Frozen):
    type: str  # http / apiKey / oauth2 / openIdConnect
    scheme: str | None = None
    bearer_format: str | None = None
    flows: OAuthFlows | None = None
    open_id_connect_url: str | None = None
    name: str | None = None
    location: str | None = None  # header / query / cookie for apiKey


class DataDependency(_Frozen):
    from_step: int
    to_step: int
    data_field: str
    required: bool = False


class FlowStep(_Frozen):
    endpoint: ApiEndpoint
    step_number: int  # 1-based
    input_from_previous_step: list[str] | None = None
    output_to_next_step: list[str] | None = None


class ApiFlow(_Frozen):
    """An inferred sequence of calls. `name` doubles as the identity key."""

    name: str
    description: str | None = None
    steps: list[FlowStep] = []
    required_roles: frozenset[str] = frozenset()
    data_flow: list[DataDependency] = []

    @field_serializer("required_roles")
    def _sorted_roles(self, roles: frozenset[str]) -> list[str]:
        return sorted(roles)


class OpenApiSpec(_Frozen):
    """Root of the model; component schemas are referenced by name only."""

    version: str
    title: str
    description: str | None = None
    servers: list[str] = []
    endpoints: list[ApiEndpoint] = []
    schemas: dict[str, SchemaDefinition] = {}
    security_schemes: dict[str, SecurityScheme] = {}


def resolve_ref(
    schema: SchemaDefinition | None, schemas: dict[str, SchemaDefinition] | None
) -> SchemaDefinition | None:
    """Look a `$ref` up in a component map. Unknown refs resolve to the schema as given."""
    if schema is None or not schema.ref or not schemas:
        return schema
    return schemas.get(schema.ref_name, schema)
