"""Rule-based data classifier. Tags parameters and schema fields with a sensitivity category.

Rules are evaluated in table order and the first match wins. There is no
learned model: the same input always produces the same classifications.
"""

import logging
import re
from typing import Callable, NamedTuple

from api_recon.parser.base import (
    ApiEndpoint,
    ApiParameter,
    DataCategory,
    DataClassification,
    OpenApiSpec,
    SchemaDefinition,
    SensitivityLevel,
    resolve_ref,
)

logger = logging.getLogger(__name__)

MAX_DEPTH = 5

AUTH_PATTERNS = frozenset({
    "password", "passwd", "pwd",
    "token", "jwt", "bearer",
    "secret", "api_key", "apikey", "api-key",
    "authorization", "auth",
    "credential", "session", "cookie",
})

PII_PATTERNS = frozenset({
    "email", "mail",
    "phone", "mobile", "tel", "telephone",
    "address", "street", "city", "zip", "postal",
    "ssn", "social_security",
    "dob", "birthdate", "birth_date", "dateofbirth",
    "name", "firstname", "lastname", "fullname",
    "passport", "license", "driver",
})

FINANCIAL_PATTERNS = frozenset({
    "card", "credit", "debit",
    "cvv", "cvc", "security_code",
    "account", "iban", "routing",
    "payment", "billing",
    "price", "amount", "balance",
})

ADMIN_PATTERNS = frozenset({
    "admin", "administrator",
    "role", "permission", "scope",
    "privilege", "access_level",
    "sudo", "root",
})

IDENTIFIER_PATTERNS = frozenset({
    "id", "uuid", "guid",
    "identifier", "key",
    "reference", "ref",
})

# Matched against the schema's `pattern` text, not against sample values
EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}", re.IGNORECASE)
PHONE_RE = re.compile(r"\d{3}[-.]?\d{3}[-.]?\d{4}")
SSN_RE = re.compile(r"\d{3}-\d{2}-\d{4}")
CREDIT_CARD_RE = re.compile(r"\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}")

SENSITIVITY = {
    DataCategory.AUTH: SensitivityLevel.CRITICAL,
    DataCategory.FINANCIAL: SensitivityLevel.CRITICAL,
    DataCategory.PII: SensitivityLevel.HIGH,
    DataCategory.ADMIN: SensitivityLevel.HIGH,
    DataCategory.IDENTIFIER: SensitivityLevel.MEDIUM,
    DataCategory.PUBLIC: SensitivityLevel.LOW,
    DataCategory.UNKNOWN: SensitivityLevel.LOW,
}


class Rule(NamedTuple):
    name: str
    category: DataCategory
    matches: Callable[[str, SchemaDefinition], bool]


def _name_in(patterns: frozenset[str]) -> Callable[[str, SchemaDefinition], bool]:
    return lambda name, schema: any(p in name for p in patterns)


def _format_in(*formats: str) -> Callable[[str, SchemaDefinition], bool]:
    return lambda name, schema: schema.format is not None and schema.format.lower() in formats


def _pattern_has(regex: re.Pattern) -> Callable[[str, SchemaDefinition], bool]:
    return lambda name, schema: schema.pattern is not None and regex.search(schema.pattern) is not None


# Auth names beat format hints; format hints beat every other name pattern.
RULES: list[Rule] = [
    Rule("auth-name", DataCategory.AUTH, _name_in(AUTH_PATTERNS)),
    Rule("password-format", DataCategory.AUTH, _format_in("password")),
    Rule("email-format", DataCategory.PII, _format_in("email")),
    Rule("identifier-format", DataCategory.IDENTIFIER, _format_in("uuid", "uri")),
    Rule("pii-name", DataCategory.PII, _name_in(PII_PATTERNS)),
    Rule("financial-name", DataCategory.FINANCIAL, _name_in(FINANCIAL_PATTERNS)),
    Rule("admin-name", DataCategory.ADMIN, _name_in(ADMIN_PATTERNS)),
    Rule("identifier-name", DataCategory.IDENTIFIER, _name_in(IDENTIFIER_PATTERNS)),
    Rule("email-pattern", DataCategory.PII, _pattern_has(EMAIL_RE)),
    Rule("phone-pattern", DataCategory.PII, _pattern_has(PHONE_RE)),
    Rule("ssn-pattern", DataCategory.PII, _pattern_has(SSN_RE)),
    Rule("credit-card-pattern", DataCategory.FINANCIAL, _pattern_has(CREDIT_CARD_RE)),
]


def determine_category(field_name: str, schema: SchemaDefinition) -> DataCategory:
    """Return the category of the first matching rule, or UNKNOWN."""
    name = field_name.lower()
    for rule in RULES:
        if rule.matches(name, schema):
            return rule.category
    return DataCategory.UNKNOWN


def build_reason(field_name: str, schema: SchemaDefinition, category: DataCategory) -> str:
    reasons = []
    if category == DataCategory.AUTH:
        reasons.append("Authentication field pattern")
    elif category == DataCategory.PII:
        reasons.append("Email format" if schema.format == "email" else "PII field pattern")
    elif category == DataCategory.FINANCIAL:
        reasons.append("Financial data pattern")
    elif category == DataCategory.ADMIN:
        reasons.append("Administrative field pattern")
    elif category == DataCategory.IDENTIFIER:
        reasons.append("Identifier pattern")

    if schema.format is not None:
        reasons.append(f"format: {schema.format}")

    if not reasons:
        return f"Matched field name pattern: {field_name}"
    return ", ".join(reasons)


class DataClassifier:
    """Attaches DataClassification records to endpoints of an OpenApiSpec."""

    def __init__(self, max_depth: int = MAX_DEPTH):
        self.max_depth = max_depth

    def classify_spec(self, spec: OpenApiSpec) -> OpenApiSpec:
        """Return a copy of the OpenApiSpec with every endpoint classified."""
        endpoints = [self.classify_endpoint(ep, spec.schemas) for ep in spec.endpoints]
        sensitive = sum(1 for ep in endpoints if ep.data_sensitivity >= SensitivityLevel.HIGH)
        logger.info(f"Classified {len(endpoints)} endpoints, {sensitive} with HIGH or CRITICAL data")
        return spec.model_copy(update={"endpoints": endpoints})

    def classify_endpoint(
        self, endpoint: ApiEndpoint, schemas: dict[str, SchemaDefinition] | None = None
    ) -> ApiEndpoint:
        """Return a copy of the endpoint with classifications and sensitivity filled in."""
        parameters = [
            param.model_copy(update={"classification": self.classify_parameter(param, schemas)})
            for param in endpoint.parameters
        ]

        body_classifications = []
        if endpoint.request_body is not None:
            for media in endpoint.request_body.content.values():
                if media.schema_ is not None:
                    body_classifications.extend(self.classify_schema(media.schema_, "", schemas))

        classifications = [p.classification for p in parameters if p.classification] + body_classifications
        sensitivity = max((c.sensitivity for c in classifications), default=SensitivityLevel.LOW)
        logger.debug(f"{endpoint.key}: {len(classifications)} classified fields, {sensitivity.value}")

        return endpoint.model_copy(
            update={
                "parameters": parameters,
                "classification": classifications,
                "data_sensitivity": sensitivity,
            }
        )

    def classify_parameter(
        self, param: ApiParameter, schemas: dict[str, SchemaDefinition] | None = None
    ) -> DataClassification | None:
        """Classify a parameter by name and schema hints. None when nothing matches."""
        return self._classify_field(param.name, resolve_ref(param.schema_, schemas), param.name)

    def classify_schema(
        self,
        schema: SchemaDefinition,
        base_path: str,
        schemas: dict[str, SchemaDefinition] | None = None,
        depth: int = 0,
    ) -> list[DataClassification]:
        """Classify the properties of a schema, recursing into nested objects.

        Only `object` properties that carry their own `properties` are
        descended into; array items are not. Anything nested deeper than
        `max_depth` contributes nothing. `$ref`s are looked up by name in
        `schemas` when it is given, sharing the same depth counter.
        """
        if depth > self.max_depth:
            return []

        schema = resolve_ref(schema, schemas)
        classifications = []
        for prop_name, prop_schema in (schema.properties or {}).items():
            field_path = f"{base_path}.{prop_name}" if base_path else prop_name
            prop_schema = resolve_ref(prop_schema, schemas)

            classification = self._classify_field(prop_name, prop_schema, field_path)
            if classification is not None:
                classifications.append(classification)

            if prop_schema.type == "object" and prop_schema.properties is not None:
                classifications.extend(self.classify_schema(prop_schema, field_path, schemas, depth + 1))

        return classifications

    def _classify_field(
        self, name: str, schema: SchemaDefinition, field_path: str
    ) -> DataClassification | None:
        category = determine_category(name, schema)
        if category == DataCategory.UNKNOWN:
            return None
        return DataClassification(
            field_path=field_path,
            category=category,
            sensitivity=SENSITIVITY[category],
            reason=build_reason(name, schema, category),
        )
