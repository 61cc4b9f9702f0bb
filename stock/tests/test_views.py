import json
from decimal import Decimal

import pytest
from django.urls import reverse

from stock.models import InventoryTransaction


@pytest.fixture
def api(client, tenant):
    def _call(method, name, data=None, tenant_id=None, **kwargs):
        headers = {"HTTP_X_TENANT_ID": str(tenant_id or tenant.id)}
        url = reverse(f"stock:{name}", kwargs=kwargs)
        if method == "get":
            response = client.get(url, data or {}, **headers)
        else:
            response = getattr(client, method)(
                url, json.dumps(data or {}), content_type="application/json", **headers
            )
        return response.status_code, response.json()
    return _call


def test_create_and_fetch_material(api):
    status, body = api("post", "material-list", {"name": "Flour", "unit": "g", "stock_quantity": "250"})
    assert status == 201
    material_id = body["material"]["id"]

    status, body = api("get", "material-detail", material_id=material_id)
    assert status == 200
    assert body["material"]["stock_quantity"] == "250.0000"
    assert body["material"]["can_be_deleted"] is True


def test_validation_error_shape(api):
    status, body = api("post", "material-list", {"name": "Flour", "unit": "bucket"})

    assert status == 400
    assert body["success"] is False
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["details"]["field"] == "unit"


def test_invalid_json_body(client, tenant):
    response = client.post(
        reverse("stock:material-list"), "{not json", content_type="application/json",
        HTTP_X_TENANT_ID=str(tenant.id),
    )

    assert response.status_code == 400
    assert response.json()["error"]["details"]["field"] == "body"


def test_missing_tenant_header(client):
    response = client.get(reverse("stock:material-list"))

    assert response.status_code == 400
    assert response.json()["error"]["details"]["field"] == "tenant_id"


def test_adjust_stock_endpoint(api, flour):
    status, body = api("post", "material-adjust",
                       {"transaction_type": "restock", "quantity": "50", "reason": "purchase"},
                       material_id=flour.id)

    assert status == 201
    assert body["material"]["stock_quantity"] == "1100.0000"


def test_adjust_stock_missing_field(api, flour):
    status, body = api("post", "material-adjust", {"transaction_type": "restock", "quantity": "50"},
                       material_id=flour.id)

    assert status == 400
    assert body["error"]["details"]["field"] == "reason"


def test_max_producible_endpoint(api, cake):
    status, body = api("get", "recipe-max-producible", recipe_id=cake.id)

    assert status == 200
    assert body["max_quantity"] == 10
    assert body["limiting_material"]["material_name"] == "Flour"


def test_sufficiency_endpoint(api, cake):
    status, body = api("get", "recipe-sufficiency", {"quantity": "11"}, recipe_id=cake.id)

    assert status == 200
    assert body["sufficient"] is False
    assert len(body["insufficient_materials"]) == 2


def test_produce_endpoint(api, cake, flour):
    status, body = api("post", "recipe-produce", {"quantity": 4, "reference": {"type": "order", "id": 12}},
                       recipe_id=cake.id)

    assert status == 201
    assert len(body["transactions"]) == 2
    assert body["transactions"][0]["reference"] == {"type": "order", "id": 12}
    flour.refresh_from_db()
    assert flour.stock_quantity == Decimal("630")


def test_produce_insufficient_returns_shortages(api, cake):
    status, body = api("post", "recipe-produce", {"quantity": 11}, recipe_id=cake.id)

    assert status == 400
    assert body["error"]["code"] == "insufficient_materials"
    shortages = {s["material_name"]: s["shortage"] for s in body["error"]["details"]["insufficient_materials"]}
    assert Decimal(shortages["Flour"]) == Decimal("105")
    assert Decimal(shortages["Sugar"]) == Decimal("50")
    assert not InventoryTransaction.objects.exists()


def test_recipe_not_found_for_other_tenant(api, cake, other_tenant):
    status, body = api("get", "recipe-detail", recipe_id=cake.id, tenant_id=other_tenant.id)

    assert status == 404
    assert body["error"]["code"] == "not_found"


def test_delete_active_recipe_conflict(api, cake):
    status, body = api("delete", "recipe-detail", recipe_id=cake.id)

    assert status == 409
    assert body["error"]["code"] == "deletion_blocked"


def test_delete_material_in_active_recipe_conflict(api, cake, flour):
    status, body = api("delete", "material-detail", material_id=flour.id)

    assert status == 409
    assert body["error"]["details"]["blocked_by"] == ["Cake"]


def test_activate_endpoint(api, cake, make_recipe, flour):
    second = make_recipe([(flour, "90", "0")], name="Cake v2", is_active=False)

    status, body = api("post", "recipe-activate", recipe_id=second.id)

    assert status == 200
    assert body["deactivated_recipe_ids"] == [cake.id]


def test_order_transactions_endpoint(api, cake):
    api("post", "recipe-produce", {"quantity": 1, "reference": {"type": "order", "id": 5}}, recipe_id=cake.id)
    api("post", "recipe-produce", {"quantity": 1}, recipe_id=cake.id)

    status, body = api("get", "transaction-order", order_id=5)

    assert status == 200
    assert body["count"] == 2


def test_product_availability_endpoint(api, cake, product):
    status, body = api("get", "product-availability", product_id=product.id)

    assert status == 200
    assert body["available_quantity"] == 10


def test_clone_recipe_endpoint(api, cake):
    status, body = api("post", "recipe-clone", {"name": "Cake v2", "notes": "less sugar"}, recipe_id=cake.id)

    assert status == 201
    assert body["recipe"]["name"] == "Cake v2"
    assert body["recipe"]["is_active"] is False
    assert body["recipe"]["notes"] == "less sugar"
    assert body["recipe"]["component_count"] == 2


def test_batch_plan_endpoint(api, cake, product):
    status, body = api("post", "batch-plan", {"items": [{"product_id": product.id, "quantity": 11}]})

    assert status == 200
    assert body["is_feasible"] is False
    assert {s["material_name"] for s in body["material_shortages"]} == {"Flour", "Sugar"}


def test_capacity_forecast_endpoint(api, cake, product):
    status, body = api("get", "product-capacity-forecast", {"days": "2", "avg_daily_usage": "4"},
                       product_id=product.id)

    assert status == 200
    assert [day["production_capacity"] for day in body["capacity_forecast"]] == [10, 6, 2]


def test_simulate_endpoint_validation(api, cake, product):
    status, body = api("get", "product-simulate", {"quantity": "1.5"}, product_id=product.id)

    assert status == 400
    assert body["error"]["details"]["field"] == "quantity"
