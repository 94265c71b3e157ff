"""OpenAPI document loader and converter.

Loads OpenAPI 3.x and Swagger 2.0 documents from a file or URL and converts
them into an OpenApiSpec. Swagger 2.0 body parameters and response schemas
are mapped onto request bodies and media types. Conversion is
all-or-nothing: a failure raises a SpecLoadError and yields no spec.
"""

import logging
from pathlib import Path

import requests
import yaml
from pydantic import ValidationError

from api_recon.config import AppConfig, app_config
from .base import (
    ApiEndpoint,
    ApiParameter,
    MediaTypeDefinition,
    OAuthFlow,
    OAuthFlows,
    OpenApiSpec,
    ParameterLocation,
    RequestBodyDefinition,
    ResponseDefinition,
    SchemaDefinition,
    SecurityScheme,
)
from .detect import detect_format, detect_source
from .errors import (
    ConversionError,
    DocumentNotFoundError,
    DocumentUnreachableError,
    GrammarError,
    SpecLoadError,
)

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "TRACE")

LOCATIONS = {
    "query": ParameterLocation.QUERY,
    "path": ParameterLocation.PATH,
    "header": ParameterLocation.HEADER,
    "cookie": ParameterLocation.COOKIE,
}

# Raw schema trees are finite unless YAML aliases make them recursive.
MAX_CONVERSION_DEPTH = 64


class _TooDeep(Exception):
    pass


def parse_openapi(file_path: Path) -> OpenApiSpec:
    """Parse an OpenAPI file into an OpenApiSpec."""
    return convert_document(load_document(str(file_path)))


def parse_openapi_url(url: str, config: AppConfig | None = None) -> OpenApiSpec:
    """Fetch and parse an OpenAPI document served over HTTP(S)."""
    return convert_document(_fetch_url(url, config or app_config))


def parse_location(location: str, config: AppConfig | None = None) -> OpenApiSpec:
    """Parse an OpenAPI document from either a local path or a URL."""
    return convert_document(load_document(location, config))


def load_document(location: str, config: AppConfig | None = None) -> dict:
    """Read and syntactically parse a document, without converting it."""
    if detect_source(location) == "url":
        return _fetch_url(location, config or app_config)

    path = Path(location)
    if not path.is_file():
        raise DocumentNotFoundError("File not found", location)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise GrammarError(f"File is not valid UTF-8: {e}", location) from e
    except OSError as e:
        raise DocumentNotFoundError(f"Cannot read file: {e}", location) from e
    return _parse_text(text, location)


def _fetch_url(url: str, config: AppConfig) -> dict:
    logger.debug(f"Fetching OpenAPI document from {url}")
    try:
        response = requests.get(
            url,
            timeout=config.http_timeout,
            headers={"User-Agent": config.user_agent, "Accept": "application/json, application/yaml"},
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise DocumentUnreachableError(f"Could not fetch document: {e}", url) from e
    return _parse_text(response.text, url)


def _parse_text(text: str, location: str) -> dict:
    # JSON is a subset of YAML, so one loader covers both
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise GrammarError(f"Invalid YAML/JSON: {e}", location) from e

    if detect_format(doc) is None:
        raise GrammarError("Not an OpenAPI document (missing 'openapi' or 'swagger' key)", location)
    return doc


def convert_document(doc: dict) -> OpenApiSpec:
    """Convert an already-parsed OpenAPI document into an OpenApiSpec."""
    if detect_format(doc) is None:
        raise GrammarError("Not an OpenAPI document (missing 'openapi' or 'swagger' key)")
    try:
        spec = _convert(doc)
    except SpecLoadError:
        raise
    except _TooDeep as e:
        raise ConversionError(f"Schema nesting exceeds {MAX_CONVERSION_DEPTH} levels") from e
    except (AttributeError, TypeError, KeyError, ValueError, ValidationError) as e:
        raise ConversionError(f"Failed to convert OpenAPI document: {e}") from e

    logger.info(
        f"Converted '{spec.title}': {len(spec.endpoints)} endpoints, "
        f"{len(spec.schemas)} schemas, {len(spec.security_schemes)} security schemes"
    )
    return spec


def _convert(doc: dict) -> OpenApiSpec:
    info = doc.get("info") or {}
    servers = [s["url"] for s in doc.get("servers") or [] if isinstance(s, dict) and s.get("url")]
    components = doc.get("components") or {}

    raw_schemas = components.get("schemas") or doc.get("definitions") or {}
    raw_schemes = components.get("securitySchemes") or doc.get("securityDefinitions") or {}

    return OpenApiSpec(
        version=str(doc.get("openapi") or doc.get("swagger") or "3.0.0"),
        title=info.get("title") or "Untitled API",
        description=info.get("description"),
        servers=servers,
        endpoints=_extract_endpoints(doc),
        schemas={str(name): _convert_schema(s) for name, s in raw_schemas.items()},
        security_schemes={str(name): _convert_security_scheme(s) for name, s in raw_schemes.items()},
    )


def _extract_endpoints(doc: dict) -> list[ApiEndpoint]:
    endpoints = []
    for path, path_item in (doc.get("paths") or {}).items():
        path_item = _deref(doc, path_item)
        if not isinstance(path_item, dict):
            logger.warning(f"Skipping malformed path item: {path}")
            continue
        shared_params = path_item.get("parameters") or []
        for method in HTTP_METHODS:
            operation = path_item.get(method.lower())
            if operation is None:
                continue
            endpoints.append(_convert_operation(doc, str(path), method, operation, shared_params))
    return endpoints


def _convert_operation(doc: dict, path: str, method: str, operation: dict, shared_params: list) -> ApiEndpoint:
    # Path-level params first, operation-level appended, no de-duplication
    raw_params = list(shared_params) + list(operation.get("parameters") or [])
    resolved = [p for p in (_deref(doc, raw) for raw in raw_params) if p]
    swagger = detect_format(doc) == "swagger"

    request_body = None
    if swagger:
        request_body, resolved = _swagger_body(doc, operation, resolved)
    elif operation.get("requestBody") is not None:
        body = _deref(doc, operation["requestBody"])
        request_body = RequestBodyDefinition(
            description=body.get("description"),
            required=bool(body.get("required", False)),
            content=_convert_content(body.get("content")),
        )
    parameters = [_convert_parameter(p) for p in resolved]

    responses = {}
    for code, resp in (operation.get("responses") or {}).items():
        resp = _deref(doc, resp or {})
        if swagger:
            content = _swagger_content(resp.get("schema"), operation.get("produces") or doc.get("produces"))
        else:
            content = _convert_content(resp.get("content"))
        responses[str(code)] = ResponseDefinition(description=resp.get("description"), content=content)

    security = operation.get("security")

    return ApiEndpoint(
        path=path,
        method=method,
        operation_id=operation.get("operationId"),
        summary=operation.get("summary"),
        description=operation.get("description"),
        parameters=parameters,
        request_body=request_body,
        responses=responses,
        security=_copy_security(security),
        tags=[str(t) for t in operation.get("tags") or []],
        deprecated=bool(operation.get("deprecated", False)),
    )


def _convert_parameter(param: dict) -> ApiParameter:
    raw_schema = _parameter_schema(param)
    return ApiParameter(
        name=str(param["name"]),
        location=LOCATIONS.get(param.get("in"), ParameterLocation.QUERY),
        required=bool(param.get("required", False)),
        description=param.get("description"),
        schema=_convert_schema(raw_schema) if raw_schema is not None else SchemaDefinition(type="string"),
        deprecated=bool(param.get("deprecated", False)),
    )


def _parameter_schema(param: dict) -> dict | None:
    raw_schema = param.get("schema")
    if raw_schema is None and "type" in param:
        # Swagger 2.0 puts the type on the parameter itself
        raw_schema = {k: param[k] for k in ("type", "format", "pattern", "enum", "items") if k in param}
    return raw_schema


def _swagger_body(
    doc: dict, operation: dict, params: list[dict]
) -> tuple[RequestBodyDefinition | None, list[dict]]:
    """Split Swagger 2.0 `body` / `formData` parameters off into a request body.

    Returns the request body (or None) and the remaining parameters.
    """
    consumes = operation.get("consumes") or doc.get("consumes") or []
    body = next((p for p in params if p.get("in") == "body"), None)
    form = [p for p in params if p.get("in") == "formData"]
    remaining = [p for p in params if p.get("in") not in ("body", "formData")]

    if body is not None:
        request_body = RequestBodyDefinition(
            description=body.get("description"),
            required=bool(body.get("required", False)),
            content=_swagger_content(body.get("schema"), consumes),
        )
    elif form:
        media_type = next((str(m) for m in consumes if "form" in str(m)), "application/x-www-form-urlencoded")
        schema = {
            "type": "object",
            "properties": {str(p["name"]): _parameter_schema(p) or {"type": "string"} for p in form},
            "required": [str(p["name"]) for p in form if p.get("required")],
        }
        request_body = RequestBodyDefinition(
            required=any(p.get("required") for p in form),
            content={media_type: MediaTypeDefinition(schema=_convert_schema(schema))},
        )
    else:
        request_body = None
    return request_body, remaining


def _swagger_content(schema: dict | None, media_types: list | None) -> dict[str, MediaTypeDefinition]:
    if schema is None:
        return {}
    if not media_types or "application/json" in media_types:
        media_type = "application/json"
    else:
        media_type = str(media_types[0])
    return {media_type: MediaTypeDefinition(schema=_convert_schema(schema))}


def _convert_content(content: dict | None) -> dict[str, MediaTypeDefinition]:
    result = {}
    for media_type, media in (content or {}).items():
        raw_schema = (media or {}).get("schema")
        result[str(media_type)] = MediaTypeDefinition(
            schema=_convert_schema(raw_schema) if raw_schema is not None else None
        )
    return result


def _convert_schema(schema: dict | bool, depth: int = 0) -> SchemaDefinition:
    if depth > MAX_CONVERSION_DEPTH:
        raise _TooDeep()
    if not isinstance(schema, dict):
        # 3.1 boolean schemas carry no structure
        return SchemaDefinition()

    schema_type = schema.get("type")
    nullable = schema.get("nullable")
    if isinstance(schema_type, list):
        # 3.1 type arrays: "null" becomes the nullable flag
        if "null" in schema_type:
            nullable = True
        schema_type = next((str(t) for t in schema_type if t != "null"), None)

    properties = None
    if isinstance(schema.get("properties"), dict):
        properties = {str(name): _convert_schema(prop, depth + 1) for name, prop in schema["properties"].items()}
    items = schema.get("items")

    return SchemaDefinition(
        type=schema_type,
        format=schema.get("format"),
        description=schema.get("description"),
        properties=properties,
        required=schema.get("required") if isinstance(schema.get("required"), list) else None,
        items=_convert_schema(items, depth + 1) if items is not None else None,
        enum=schema.get("enum"),
        pattern=schema.get("pattern"),
        min_length=schema.get("minLength"),
        max_length=schema.get("maxLength"),
        minimum=schema.get("minimum"),
        maximum=schema.get("maximum"),
        ref=schema.get("$ref"),
        nullable=nullable,
        read_only=schema.get("readOnly"),
        write_only=schema.get("writeOnly"),
    )


def _convert_security_scheme(scheme: dict) -> SecurityScheme:
    flows = None
    raw_flows = scheme.get("flows")
    if isinstance(raw_flows, dict):
        flows = OAuthFlows(
            implicit=_convert_oauth_flow(raw_flows.get("implicit")),
            password=_convert_oauth_flow(raw_flows.get("password")),
            client_credentials=_convert_oauth_flow(raw_flows.get("clientCredentials")),
            authorization_code=_convert_oauth_flow(raw_flows.get("authorizationCode")),
        )

    return SecurityScheme(
        type=str(scheme.get("type") or "unknown"),
        scheme=scheme.get("scheme"),
        bearer_format=scheme.get("bearerFormat"),
        flows=flows,
        open_id_connect_url=scheme.get("openIdConnectUrl"),
        name=scheme.get("name"),
        location=scheme.get("in"),
    )


def _convert_oauth_flow(flow: dict | None) -> OAuthFlow | None:
    if not isinstance(flow, dict):
        return None
    return OAuthFlow(
        authorization_url=flow.get("authorizationUrl"),
        token_url=flow.get("tokenUrl"),
        refresh_url=flow.get("refreshUrl"),
        scopes={str(k): str(v) for k, v in (flow.get("scopes") or {}).items()},
    )


def _copy_security(security: list | None) -> list[dict[str, list[str]]]:
    result = []
    for requirement in security or []:
        if not isinstance(requirement, dict):
            logger.warning(f"Skipping malformed security requirement: {requirement!r}")
            continue
        result.append({str(name): [str(s) for s in scopes or []] for name, scopes in requirement.items()})
    return result


def _deref(doc: dict, obj: dict) -> dict:
    """Follow local `$ref` pointers for parameters, bodies and responses.

    Schemas are not dereferenced here; they keep their `$ref` by name.
    """
    seen = set()
    while isinstance(obj, dict) and "$ref" in obj:
        ref = obj["$ref"]
        if ref in seen or not str(ref).startswith("#/"):
            logger.warning(f"Unresolvable reference: {ref}")
            return {}
        seen.add(ref)
        target = doc
        for part in str(ref)[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            target = target.get(part) if isinstance(target, dict) else None
        if target is None:
            logger.warning(f"Unresolvable reference: {ref}")
            return {}
        obj = target
    return obj
