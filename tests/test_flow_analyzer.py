from pathlib import Path

import pytest

from api_recon.analysis.flows import (
    analyze,
    base_path,
    dedupe_by_name,
    detect_auth_flows,
    index_id_producers,
    is_likely_identifier,
)
from api_recon.parser.base import (
    ApiEndpoint,
    ApiFlow,
    MediaTypeDefinition,
    OpenApiSpec,
    ResponseDefinition,
    SchemaDefinition,
)
from api_recon.parser.openapi import parse_openapi

FIXTURES = Path(__file__).parent / "fixtures"


def _returns(*props: str) -> dict[str, ResponseDefinition]:
    schema = SchemaDefinition(type="object", properties={p: SchemaDefinition(type="string") for p in props})
    return {"200": ResponseDefinition(content={"application/json": MediaTypeDefinition(schema=schema)})}


def _spec(*endpoints: ApiEndpoint, **kwargs) -> OpenApiSpec:
    return OpenApiSpec(version="3.0.0", title="Flow API", endpoints=list(endpoints), **kwargs)


class TestHelpers:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/items/{id}/sub", "/items"),
            ("/items", "/items"),
            ("/items/", "/items"),
            ("/a/b/{x}", "/a/b"),
            ("/{id}", ""),
        ],
    )
    def test_base_path(self, path, expected):
        assert base_path(path) == expected

    @pytest.mark.parametrize("name", ["id", "ID", "userId", "order_id", "identifier", "resourceUuid"])
    def test_identifier_names(self, name):
        assert is_likely_identifier(name)

    @pytest.mark.parametrize("name", ["name", "token", "idea", "valid_from"])
    def test_non_identifier_names(self, name):
        assert not is_likely_identifier(name)


class TestAuthFlows:
    def test_path_and_security(self):
        spec = _spec(
            ApiEndpoint(path="/auth/login", method="POST"),
            ApiEndpoint(path="/secure/resource", method="GET", security=[{"bearerAuth": []}]),
        )
        flows = analyze(spec)
        names = [f.name for f in flows]
        assert names == ["Auth flow: POST /auth/login", "Auth flow: GET /secure/resource"]
        assert flows[0].required_roles == frozenset()
        assert flows[1].required_roles == frozenset({"bearerAuth"})

    def test_tag_match_is_case_insensitive(self):
        flows = detect_auth_flows([ApiEndpoint(path="/login", method="POST", tags=["Auth"])])
        assert len(flows) == 1
        assert len(flows[0].steps) == 1
        assert flows[0].steps[0].step_number == 1

    def test_path_match_is_case_insensitive(self):
        assert detect_auth_flows([ApiEndpoint(path="/OAuth/token", method="POST")])

    def test_unrelated_endpoint(self):
        assert detect_auth_flows([ApiEndpoint(path="/pets", method="GET", tags=["authors"])]) == []

    def test_roles_are_names_without_scopes(self):
        ep = ApiEndpoint(path="/x", method="GET", security=[{"oauth": ["read"]}, {"apiKey": []}])
        assert detect_auth_flows([ep])[0].required_roles == frozenset({"oauth", "apiKey"})


class TestCrudFlows:
    def test_detects_simple_crud_flow(self):
        spec = _spec(
            ApiEndpoint(path="/items", method="POST", responses=_returns("id")),
            ApiEndpoint(path="/items/{id}", method="GET"),
            ApiEndpoint(path="/items/{id}", method="PUT"),
        )
        crud = [f for f in analyze(spec) if f.name.startswith("CRUD flow")]

        assert len(crud) == 1
        flow = crud[0]
        assert flow.name == "CRUD flow: /items"
        assert [s.step_number for s in flow.steps] == [1, 2, 3]
        assert [s.endpoint.method for s in flow.steps] == ["POST", "GET", "PUT"]
        assert flow.steps[0].output_to_next_step == ["id"]
        assert flow.steps[1].input_from_previous_step == ["id"]
        assert [(d.from_step, d.to_step, d.data_field) for d in flow.data_flow] == [(1, 2, "id"), (1, 3, "id")]

    def test_no_detail_endpoints(self):
        spec = _spec(ApiEndpoint(path="/items", method="POST"), ApiEndpoint(path="/items", method="GET"))
        assert not [f for f in analyze(spec) if f.name.startswith("CRUD")]

    def test_root_post_has_no_base(self):
        spec = _spec(ApiEndpoint(path="/", method="POST"), ApiEndpoint(path="/{id}", method="GET"))
        assert analyze(spec) == []

    def test_same_path_is_excluded(self):
        spec = _spec(
            ApiEndpoint(path="/items/{id}/notes", method="POST"),
            ApiEndpoint(path="/items/{id}/notes", method="GET"),
            ApiEndpoint(path="/items/{id}", method="GET"),
        )
        flow = analyze(spec)[0]
        assert flow.name == "CRUD flow: /items"
        assert [s.endpoint.key for s in flow.steps] == ["POST /items/{id}/notes", "GET /items/{id}"]

    def test_roles_union(self):
        spec = _spec(
            ApiEndpoint(path="/items", method="POST", security=[{"bearerAuth": []}]),
            ApiEndpoint(path="/items/{id}", method="DELETE", security=[{"admin": ["items:delete"]}]),
        )
        crud = [f for f in analyze(spec) if f.name == "CRUD flow: /items"][0]
        assert crud.required_roles == frozenset({"bearerAuth", "admin"})


class TestLinkedFlows:
    def test_producer_consumer(self):
        spec = _spec(
            ApiEndpoint(path="/checkout", method="POST", responses=_returns("id")),
            ApiEndpoint(path="/orders/{id}", method="GET"),
        )
        flows = analyze(spec)
        assert [f.name for f in flows] == ["Linked flow: /checkout -> /orders/{id}"]
        flow = flows[0]
        assert [s.step_number for s in flow.steps] == [1, 2]
        assert flow.steps[1].endpoint.path == "/orders/{id}"
        assert flow.data_flow[0].data_field == "id"

    def test_param_plus_id_suffix(self):
        spec = _spec(
            ApiEndpoint(path="/signup", method="PUT", responses=_returns("userId")),
            ApiEndpoint(path="/profiles/{user}", method="GET"),
        )
        flow = analyze(spec)[0]
        assert flow.name == "Linked flow: /signup -> /profiles/{user}"
        assert flow.steps[0].output_to_next_step == ["userId"]

    def test_ref_response_is_resolved(self):
        spec = _spec(
            ApiEndpoint(
                path="/carts",
                method="PUT",
                responses={
                    "200": ResponseDefinition(
                        content={"application/json": MediaTypeDefinition(schema=SchemaDefinition(ref="#/components/schemas/Cart"))}
                    )
                },
            ),
            ApiEndpoint(path="/checkout/{cartId}", method="GET"),
            schemas={"Cart": SchemaDefinition(type="object", properties={"cartId": SchemaDefinition(type="string")})},
        )
        assert index_id_producers(spec)["cartId"][0].path == "/carts"
        assert [f.name for f in analyze(spec)] == ["Linked flow: /carts -> /checkout/{cartId}"]

    def test_fan_out(self):
        spec = _spec(
            ApiEndpoint(path="/a", method="PUT", responses=_returns("id")),
            ApiEndpoint(path="/b", method="PUT", responses=_returns("id")),
            ApiEndpoint(path="/x/{id}", method="GET"),
            ApiEndpoint(path="/y/{id}", method="GET"),
        )
        names = [f.name for f in analyze(spec)]
        assert names == [
            "Linked flow: /a -> /x/{id}",
            "Linked flow: /b -> /x/{id}",
            "Linked flow: /a -> /y/{id}",
            "Linked flow: /b -> /y/{id}",
        ]

    def test_roles_union(self):
        spec = _spec(
            ApiEndpoint(path="/checkout", method="PUT", responses=_returns("id")),
            ApiEndpoint(path="/orders/{id}", method="GET", security=[{"apiKey": []}]),
        )
        linked = [f for f in analyze(spec) if f.name.startswith("Linked")][0]
        assert linked.required_roles == frozenset({"apiKey"})


class TestDeduplication:
    def test_first_occurrence_wins(self):
        first = ApiFlow(name="same", description="first")
        second = ApiFlow(name="same", description="second")
        other = ApiFlow(name="other")
        assert dedupe_by_name([first, other, second]) == [first, other]

    def test_consumers_sharing_path_collapse(self):
        spec = _spec(
            ApiEndpoint(path="/checkout", method="PUT", responses=_returns("id")),
            ApiEndpoint(path="/orders/{id}", method="GET"),
            ApiEndpoint(path="/orders/{id}", method="DELETE"),
        )
        assert [f.name for f in analyze(spec)] == ["Linked flow: /checkout -> /orders/{id}"]

    def test_duplicate_post_endpoints_collapse(self):
        spec = _spec(
            ApiEndpoint(path="/items", method="POST"),
            ApiEndpoint(path="/items", method="POST"),
            ApiEndpoint(path="/items/{id}", method="GET"),
        )
        assert [f.name for f in analyze(spec)] == ["CRUD flow: /items"]


class TestAnalyzeFixtures:
    def test_shop_flows_in_detector_order(self):
        flows = analyze(parse_openapi(FIXTURES / "shop.yaml"))
        assert [f.name for f in flows] == [
            "Auth flow: POST /auth/login",
            "Auth flow: POST /users",
            "Auth flow: GET /users/{userId}",
            "Auth flow: DELETE /users/{userId}",
            "CRUD flow: /users",
            "CRUD flow: /orders",
            "Linked flow: /users -> /users/{userId}",
            "Linked flow: /users/{userId} -> /users/{userId}",
            "Linked flow: /orders -> /orders/{id}",
        ]

    def test_shop_crud_roles_and_outputs(self):
        flows = {f.name: f for f in analyze(parse_openapi(FIXTURES / "shop.yaml"))}
        users = flows["CRUD flow: /users"]
        assert users.required_roles == frozenset({"bearerAuth", "apiKey", "oauth"})
        assert users.steps[0].output_to_next_step == ["userId"]
        assert len(users.steps) == 3

    def test_petstore(self):
        flows = analyze(parse_openapi(FIXTURES / "petstore.json"))
        assert [f.name for f in flows] == ["CRUD flow: /pets", "Linked flow: /pets -> /pets/{petId}"]

    def test_deterministic(self):
        spec = parse_openapi(FIXTURES / "shop.yaml")
        assert analyze(spec) == analyze(spec)

    def test_empty_spec(self):
        assert analyze(_spec()) == []
