"""Deterministic serialization of analysis results.

Keys are sorted at every level so that two runs over the same document
produce byte-identical output, which downstream hashing relies on.
"""

import json

import yaml

from api_recon.parser.base import ApiFlow, OpenApiSpec, SensitivityLevel


def dump_spec(spec: OpenApiSpec, fmt: str = "json") -> str:
    """Serialize a (classified or raw) spec as sorted JSON or YAML."""
    return _dump(spec.model_dump(mode="json", by_alias=True, exclude_none=True), fmt)


def dump_flows(flows: list[ApiFlow], fmt: str = "json") -> str:
    """Serialize flows in detector order; only keys inside each flow are sorted."""
    data = [flow.model_dump(mode="json", by_alias=True, exclude_none=True) for flow in flows]
    return _dump(data, fmt)


def _dump(data, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False) + "\n"
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=True, allow_unicode=True, default_flow_style=False)
    raise ValueError(f"Unsupported output format: {fmt}")


def build_summary(spec: OpenApiSpec, flows: list[ApiFlow] | None = None) -> str:
    """Short plain-text overview of a spec and, optionally, its flows."""
    sensitive = [ep for ep in spec.endpoints if ep.data_sensitivity >= SensitivityLevel.HIGH]
    protected = [ep for ep in spec.endpoints if ep.security]

    lines = [
        "Kind: OpenAPI Specification",
        f"Title: {spec.title}",
        f"Version: {spec.version}",
        f"Endpoints: {len(spec.endpoints)}",
        f"Sensitive endpoints: {len(sensitive)}",
        f"Auth required: {len(protected)}",
    ]

    if flows is not None:
        lines.append(f"Flows: {len(flows)}")
        for prefix in ("Auth flow", "CRUD flow", "Linked flow"):
            count = sum(1 for f in flows if f.name.startswith(prefix + ":"))
            lines.append(f"  - {prefix}: {count}")

    if sensitive:
        lines.append("Most sensitive:")
        # sorted() is stable, so ties keep document order
        for ep in sorted(sensitive, key=lambda e: e.data_sensitivity.rank, reverse=True):
            lines.append(f"  - {ep.key} [{ep.data_sensitivity.value}]")

    return "\n".join(lines)
