"""Flow analyzer: infers multi-step call flows from an OpenApiSpec.

Three heuristics run over the endpoint list, in this order:

- authentication endpoints (path or tag mentions auth, or security is set)
- CRUD lifecycles: POST /resource followed by /resource/{id} operations
- producer/consumer links: a response exposing an identifier property
  feeding an endpoint whose path parameter has the same name

Results are concatenated and de-duplicated by flow name, first one wins.
"""

import logging

from api_recon.parser.base import (
    ApiEndpoint,
    ApiFlow,
    DataDependency,
    FlowStep,
    OpenApiSpec,
    SchemaDefinition,
)

logger = logging.getLogger(__name__)


def analyze(spec: OpenApiSpec) -> list[ApiFlow]:
    """Detect auth, CRUD and linked flows in a spec."""
    auth = detect_auth_flows(spec.endpoints)
    crud = detect_crud_flows(spec.endpoints, spec.schemas)
    linked = detect_linked_flows(spec)

    flows = dedupe_by_name(auth + crud + linked)
    logger.info(
        f"Detected {len(flows)} flows ({len(auth)} auth, {len(crud)} CRUD, {len(linked)} linked before de-duplication)"
    )
    return flows


def dedupe_by_name(flows: list[ApiFlow]) -> list[ApiFlow]:
    seen = set()
    result = []
    for flow in flows:
        if flow.name in seen:
            continue
        seen.add(flow.name)
        result.append(flow)
    return result


def is_auth_endpoint(endpoint: ApiEndpoint) -> bool:
    return (
        "auth" in endpoint.path.lower()
        or any(tag.lower() == "auth" for tag in endpoint.tags)
        or bool(endpoint.security)
    )


def detect_auth_flows(endpoints: list[ApiEndpoint]) -> list[ApiFlow]:
    return [
        ApiFlow(
            name=f"Auth flow: {ep.method} {ep.path}",
            description="Authentication endpoint detected",
            steps=[FlowStep(endpoint=ep, step_number=1)],
            required_roles=frozenset(ep.security_scheme_names),
        )
        for ep in endpoints
        if is_auth_endpoint(ep)
    ]


def base_path(path: str) -> str:
    """Path prefix before the first `{param}` segment, without trailing slash.

    >>> base_path("/items/{id}/sub")
    '/items'
    """
    trimmed = path.rstrip("/")
    idx = trimmed.find("/{")
    return trimmed[:idx] if idx >= 0 else trimmed


def detect_crud_flows(
    endpoints: list[ApiEndpoint], schemas: dict[str, SchemaDefinition] | None = None
) -> list[ApiFlow]:
    flows = []
    for post in endpoints:
        if post.method.upper() != "POST":
            continue
        base = base_path(post.path)
        if not base:
            continue

        details = [ep for ep in endpoints if ep.path.startswith(base) and "{" in ep.path and ep.path != post.path]
        if not details:
            continue

        produced = list(dict.fromkeys(_identifier_properties(post, schemas))) or None
        steps = [FlowStep(endpoint=post, step_number=1, output_to_next_step=produced)]
        data_flow = []
        for number, ep in enumerate(details, start=2):
            params = ep.path_params
            steps.append(FlowStep(endpoint=ep, step_number=number, input_from_previous_step=params or None))
            data_flow.extend(DataDependency(from_step=1, to_step=number, data_field=p, required=True) for p in params)

        roles = set(post.security_scheme_names)
        for ep in details:
            roles |= ep.security_scheme_names

        flows.append(
            ApiFlow(
                name=f"CRUD flow: {base}",
                description="Detected POST -> detail operations",
                steps=steps,
                required_roles=frozenset(roles),
                data_flow=data_flow,
            )
        )
    return flows


def is_likely_identifier(name: str) -> bool:
    n = name.lower()
    return n == "id" or n.endswith("id") or "identifier" in n or "uuid" in n


def index_id_producers(spec: OpenApiSpec) -> dict[str, list[ApiEndpoint]]:
    """Map identifier-like response property names to the endpoints returning them."""
    producers: dict[str, list[ApiEndpoint]] = {}
    for ep in spec.endpoints:
        for prop in _identifier_properties(ep, spec.schemas):
            producers.setdefault(prop, []).append(ep)
    return producers


def detect_linked_flows(spec: OpenApiSpec) -> list[ApiFlow]:
    producers = index_id_producers(spec)
    flows = []
    for consumer in spec.endpoints:
        for param in consumer.path_params:
            matched: list[tuple[ApiEndpoint, str]] = []
            for key in (param, f"{param}Id"):
                for prod in producers.get(key, []):
                    if all(prod != seen for seen, _ in matched):
                        matched.append((prod, key))

            for prod, field in matched:
                flows.append(
                    ApiFlow(
                        name=f"Linked flow: {prod.path} -> {consumer.path}",
                        description=f"Producer-consumer linked by param '{param}'",
                        steps=[
                            FlowStep(endpoint=prod, step_number=1, output_to_next_step=[field]),
                            FlowStep(endpoint=consumer, step_number=2, input_from_previous_step=[param]),
                        ],
                        required_roles=frozenset(prod.security_scheme_names | consumer.security_scheme_names),
                        data_flow=[DataDependency(from_step=1, to_step=2, data_field=param, required=True)],
                    )
                )
    return flows


def _identifier_properties(
    endpoint: ApiEndpoint, schemas: dict[str, SchemaDefinition] | None = None
) -> list[str]:
    """Identifier-like property names in the endpoint's response bodies, in document order.

    A name is listed once per response schema exposing it.
    """
    names = []
    for response in endpoint.responses.values():
        for media in response.content.values():
            if media.schema_ is None:
                continue
            names.extend(p for p in (media.schema_.properties or {}) if is_likely_identifier(p))
            if schemas and media.schema_.ref:
                target = schemas.get(media.schema_.ref_name)
                if target is not None:
                    names.extend(p for p in (target.properties or {}) if is_likely_identifier(p))
    return names
