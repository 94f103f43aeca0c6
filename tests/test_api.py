from pantry_core import api
from pantry_core.constants import STORE_VARIETY
from pantry_core.jobs import JobHandle, JobKind, JobState

from conftest import make_response


def test_complete_product_is_left_alone():
    product = {
        "id": "p1",
        "lowestPrice": {"price": 3.49, "store": "Kroger"},
        "priceRange": {"min": 2.99, "max": 3.99, "period": "3 months"},
    }
    assert api.ensure_price_data([product]) == [product]


def test_missing_store_comes_from_nearby_stores_by_position():
    stores = [{"name": "Aldi"}, {"chainName": "Safeway"}]
    products = [{"id": str(i), "lowestPrice": {"store": "Unknown Store", "price": 1}} for i in range(3)]
    result = api.ensure_price_data(products, stores)
    assert [p["lowestPrice"]["store"] for p in result] == ["Aldi", "Safeway", "Aldi"]


def test_missing_store_without_nearby_stores_uses_variety():
    result = api.ensure_price_data([{"id": "a"}, {"id": "b"}])
    assert [p["lowestPrice"]["store"] for p in result] == list(STORE_VARIETY[:2])


def test_missing_range_bound_is_derived_from_the_other():
    result = api.ensure_price_data([
        {"id": "a", "priceRange": {"max": 5.0}},
        {"id": "b", "priceRange": {"min": 5.0}},
    ])
    assert result[0]["priceRange"]["min"] == 4.0
    assert result[1]["priceRange"]["max"] == 6.0


def test_missing_price_is_not_invented():
    product = api.ensure_price_data([{"id": "a", "lowestPrice": {"price": 0}}])[0]
    assert product["lowestPrice"]["price"] is None
    assert product["priceRange"] == {"min": None, "max": None, "period": "6 weeks"}


def test_normalisation_is_idempotent():
    once = api.ensure_price_data([{"id": "a", "priceRange": {"max": 5}}], [{"name": "Aldi"}])
    assert api.ensure_price_data(once) == once


def test_format_dashboard_fills_defaults():
    data = api.format_dashboard({"stores": [{"name": "Aldi"}], "buyAlerts": [{"id": "x"}]})
    assert data["pantryItems"] == [] and data["newsHighlights"] == []
    assert data["buyAlerts"][0]["lowestPrice"]["store"] == "Aldi"


def test_is_pending_response():
    assert api.is_pending_response({"status": "Pending"})
    assert not api.is_pending_response({"status": "completed"})
    assert not api.is_pending_response(["pending"])


def test_check_email_verification_assumes_verified_on_failure(client, http):
    http.add("POST", "/users/check-email-verification", make_response(503))
    assert api.check_email_verification(client, "a@b.co")


def test_status_checker_routes_by_job_kind(client, http):
    http.add("POST", "/users/data-fetch-status-by-email", make_response(200, {"status": "pending"}))
    http.add("GET", "/users/data-fetch-status/u1", make_response(200, {"status": "completed"}))
    http.add("GET", "/users/data-fetch-status", make_response(200, {"status": "failed"}))

    anonymous = api.status_checker(client)
    bearer = api.status_checker(client, token="tok")

    assert anonymous(JobHandle("a@b.co", JobKind.EMAIL_VERIFICATION)).state is JobState.PENDING
    assert anonymous(JobHandle("u1", JobKind.ACCOUNT_DATA_FETCH)).state is JobState.COMPLETED
    assert bearer(JobHandle("u1", JobKind.ACCOUNT_DATA_FETCH)).state is JobState.FAILED
    assert bearer(JobHandle("u1", JobKind.DASHBOARD_AGGREGATE)).state is JobState.FAILED
    assert http.calls[-1]["headers"]["Authorization"] == "Bearer tok"


def test_pantry_and_search_endpoints(client, http):
    http.add("GET", "/pantry-items/my-pantry", make_response(200, {"pantryItems": [{"name": "Flour"}]}))
    http.add("GET", "/pantry-items/my-pantry/trends", make_response(200, {"pantryTrends": []}))
    http.add("POST", "/search/products", make_response(200, {}))

    assert api.fetch_my_pantry(client, "tok") == [{"name": "Flour"}]
    assert api.fetch_my_pantry_trends(client, "tok") == []
    assert api.search_products(client, "tok", "rice") == []
    assert http.calls[-1]["json"] == {"query": "rice"}
