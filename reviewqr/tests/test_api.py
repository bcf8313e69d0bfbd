"""
API tests: end-to-end flows and the normalized error contract.

Every error body looks like
    {"error": {"code", "message", "request_id", "details"?}, "detail": message}
with request_id matching the x-request-id response header.
"""

import jwt

from reviewqr.core.config import settings


OWNER = {"X-User-Id": "owner-api"}
FEEDBACK = "The coffee was great and the staff were very friendly."


def _assert_error(resp, status, code):
    assert resp.status_code == status, resp.text
    body = resp.json()
    assert body["error"]["code"] == code
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")
    assert body["detail"] == body["error"]["message"]
    return body


def _setup(client, headers=OWNER):
    business = client.post("/api/businesses", json={"name": "Corner Bakery", "businessType": "Bakery"}, headers=headers)
    assert business.status_code == 201
    business_id = business.json()["data"]["id"]
    customer = client.post("/api/customers/public", json={"businessId": business_id, "name": "Ana"})
    assert customer.status_code == 201
    return business_id, customer.json()["data"]["id"]


def _submit(client, business_id, customer_id, feedback=FEEDBACK, rating=5):
    return client.post(
        "/api/reviews/public",
        json={"businessId": business_id, "customerId": customer_id, "rating": rating, "feedback": feedback},
    )


def _token(claims):
    return jwt.encode(claims, settings.AUTH_JWT_SECRET, algorithm="HS256")


def test_health(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json()["status"] == "ok"


def test_request_id_is_echoed(client):
    resp = client.get("/healthz", headers={"X-Request-Id": "req-123"})
    assert resp.headers["x-request-id"] == "req-123"


def test_review_lifecycle_over_http(client):
    business_id, customer_id = _setup(client)

    submitted = _submit(client, business_id, customer_id)
    assert submitted.status_code == 201
    review_id = submitted.json()["data"]["id"]
    assert submitted.json()["data"]["status"] == "PENDING"

    enhanced = client.post("/api/ai/enhance-review", json={"reviewId": review_id, "style": "concise"}, headers=OWNER)
    assert enhanced.status_code == 201
    data = enhanced.json()["data"]
    assert data["review"]["status"] == "AI_GENERATED"
    assert data["aiGeneration"]["status"] == "PENDING"
    assert data["aiGeneration"]["strategy"] == "fallback"

    approved = client.post(f"/api/ai/approve-review/{review_id}", headers=OWNER)
    assert approved.status_code == 200
    assert approved.json()["data"]["review"]["status"] == "APPROVED"
    assert approved.json()["data"]["aiGeneration"]["approved_by"] == "owner-api"

    published = client.post(f"/api/reviews/{review_id}/publish", headers=OWNER)
    assert published.json()["data"]["status"] == "PUBLISHED"

    listed = client.get("/api/reviews", params={"businessId": business_id}, headers=OWNER)
    assert listed.json()["count"] == 1
    assert listed.json()["total"] == 1

    detail = client.get(f"/api/reviews/{review_id}", headers=OWNER)
    assert detail.json()["data"]["aiGeneration"]["status"] == "APPROVED"


def test_reject_and_regenerate_over_http(client):
    business_id, customer_id = _setup(client)
    review_id = _submit(client, business_id, customer_id).json()["data"]["id"]
    client.post("/api/ai/enhance-review", json={"reviewId": review_id}, headers=OWNER)

    regenerated = client.post(f"/api/ai/regenerate-review/{review_id}", json={"style": "detailed"}, headers=OWNER)
    assert regenerated.status_code == 201

    rejected = client.post(f"/api/ai/reject-review/{review_id}", json={"rejectionNote": "Not my words"}, headers=OWNER)
    body = rejected.json()["data"]
    assert body["review"]["status"] == "PENDING"
    assert body["review"]["generated_review"] is None
    assert body["review"]["feedback"] == FEEDBACK
    assert body["aiGeneration"]["rejection_note"] == "Not my words"

    listing = client.get(f"/api/ai/reviews/{business_id}", params={"status": "PENDING"}, headers=OWNER)
    assert listing.json()["count"] == 1

    analytics = client.get(f"/api/ai/analytics/{business_id}", headers=OWNER).json()["data"]
    assert analytics["totalUsage"] == 2
    assert analytics["successRate"] == 100.0


def test_submit_validation_error_shape(client):
    business_id, customer_id = _setup(client)
    resp = _submit(client, business_id, customer_id, feedback="", rating=9)
    body = _assert_error(resp, 400, "validation_error")
    errors = body["error"]["details"]["errors"]
    assert any(e.startswith("rating:") for e in errors)
    assert any(e.startswith("feedback:") for e in errors)


def test_schema_validation_error_shape(client):
    resp = client.post("/api/reviews/public", json={"rating": 5})
    body = _assert_error(resp, 400, "validation_error")
    assert body["error"]["details"]["errors"]


def test_bad_status_filter_is_400(client):
    _setup(client)
    resp = client.get("/api/reviews", params={"status": "LOST"}, headers=OWNER)
    _assert_error(resp, 400, "validation_error")


def test_missing_auth_is_401(client):
    resp = client.get("/api/businesses")
    _assert_error(resp, 401, "unauthorized")


def test_header_fallback_disabled_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")
    _assert_error(client.get("/api/businesses", headers=OWNER), 401, "unauthorized")


def test_bearer_token_auth(client):
    token = _token({"sub": "owner-jwt"})
    headers = {"Authorization": f"Bearer {token}"}
    created = client.post("/api/businesses", json={"name": "Token Cafe"}, headers=headers)
    assert created.status_code == 201
    assert created.json()["data"]["owner_id"] == "owner-jwt"

    bad = client.get("/api/businesses", headers={"Authorization": "Bearer not-a-token"})
    _assert_error(bad, 401, "unauthorized")


def test_other_owner_gets_403(client):
    business_id, customer_id = _setup(client)
    review_id = _submit(client, business_id, customer_id).json()["data"]["id"]

    resp = client.post("/api/ai/enhance-review", json={"reviewId": review_id}, headers={"X-User-Id": "intruder"})
    _assert_error(resp, 403, "forbidden")

    resp = client.get("/api/reviews", params={"businessId": business_id}, headers={"X-User-Id": "intruder"})
    _assert_error(resp, 403, "forbidden")


def test_unknown_review_is_404(client):
    _assert_error(client.get("/api/reviews/does-not-exist", headers=OWNER), 404, "not_found")


def test_owner_without_business_is_404(client):
    _assert_error(client.get("/api/reviews", headers={"X-User-Id": "nobody"}), 404, "not_found")


def test_already_enhanced_is_400(client):
    business_id, customer_id = _setup(client)
    review_id = _submit(client, business_id, customer_id).json()["data"]["id"]
    client.post("/api/ai/enhance-review", json={"reviewId": review_id}, headers=OWNER)
    resp = client.post("/api/ai/enhance-review", json={"reviewId": review_id}, headers=OWNER)
    _assert_error(resp, 400, "already_enhanced")


def test_quota_denial_carries_upgrade_guidance(client):
    business_id, customer_id = _setup(client)
    review_ids = [_submit(client, business_id, customer_id).json()["data"]["id"] for _ in range(6)]
    for review_id in review_ids[:5]:
        assert client.post("/api/ai/enhance-review", json={"reviewId": review_id}, headers=OWNER).status_code == 201

    resp = client.post("/api/ai/enhance-review", json={"reviewId": review_ids[5]}, headers=OWNER)
    body = _assert_error(resp, 403, "entitlement_denied")
    details = body["error"]["details"]
    assert details["used"] == 5
    assert details["limit"] == 5
    assert details["currentPlan"] == "Free"
    assert "Premium" in details["upgradeMessage"]


def test_enhance_text_preview(client):
    resp = client.post(
        "/api/ai/enhance-text",
        json={"originalText": "great coffee and friendly staff", "businessContext": {"businessName": "Corner Bakery"}},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["improvedText"] == "Great coffee and friendly staff."
    assert data["strategy"] == "fallback"
    assert data["sentiment"] == "positive"
    assert 0.0 <= data["confidence"] <= 1.0


def test_enhance_text_rejects_junk(client):
    resp = client.post("/api/ai/enhance-text", json={"originalText": "qwrt zxcv"})
    body = _assert_error(resp, 400, "invalid_content")
    assert body["error"]["details"]["errors"]
    assert body["error"]["details"]["suggestions"]


def test_subscription_upgrade_flow(client, admin_headers):
    business_id, _ = _setup(client)
    plans = client.get("/api/subscription/plans").json()["data"]
    assert [p["id"] for p in plans] == ["FREE", "PREMIUM"]
    assert plans[1]["pricing"]["yearly"]["price"] == 499.9

    current = client.get("/api/subscription/current", headers=OWNER).json()["data"]
    assert current["plan"]["id"] == "FREE"
    assert current["storedSubscription"] is None

    upgrade = client.post("/api/subscription/upgrade", json={"planId": "premium"}, headers=OWNER).json()
    assert upgrade["requiresPayment"] is True
    assert upgrade["data"]["status"] == "PENDING"

    confirmed = client.post(
        f"/api/super-admin/subscriptions/{business_id}/confirm",
        json={"paymentReference": "pay_1"},
        headers=admin_headers,
    )
    assert confirmed.json()["data"]["status"] == "ACTIVE"
    assert confirmed.json()["data"]["payment_reference"] == "pay_1"

    usage = client.get("/api/subscription/usage/aiEnhancementsPerMonth", headers=OWNER).json()["data"]
    assert usage["allowed"] is True
    assert usage["limit"] == "unlimited"

    cancelled = client.post("/api/subscription/cancel", headers=OWNER)
    assert cancelled.json()["data"]["status"] == "CANCELLED"
    assert client.get("/api/subscription/current", headers=OWNER).json()["data"]["plan"]["id"] == "PREMIUM"


def test_owner_cannot_confirm_own_payment(client):
    business_id, _ = _setup(client)
    client.post("/api/subscription/upgrade", json={"planId": "PREMIUM"}, headers=OWNER)

    assert client.post("/api/subscription/confirm", json={}, headers=OWNER).status_code == 404
    _assert_error(
        client.post(f"/api/super-admin/subscriptions/{business_id}/confirm", json={}, headers=OWNER),
        401,
        "unauthorized",
    )
    owner_token = _token({"sub": "owner-api"})
    resp = client.post(
        f"/api/super-admin/subscriptions/{business_id}/confirm",
        json={},
        headers={"Authorization": f"Bearer {owner_token}"},
    )
    _assert_error(resp, 403, "http_error")

    usage = client.get("/api/subscription/usage/aiEnhancementsPerMonth", headers=OWNER).json()["data"]
    assert usage["limit"] == 5
    assert usage["plan_id"] == "FREE"


def test_subscription_errors(client, admin_headers):
    business_id, _ = _setup(client)
    _assert_error(client.post("/api/subscription/upgrade", json={"planId": "GOLD"}, headers=OWNER), 400, "validation_error")
    confirm = client.post(f"/api/super-admin/subscriptions/{business_id}/confirm", json={}, headers=admin_headers)
    _assert_error(confirm, 404, "not_found")
    _assert_error(client.get("/api/subscription/usage/teleport", headers=OWNER), 400, "validation_error")



def test_qr_code_endpoints(client):
    _setup(client)
    created = client.post("/api/qr-codes", json={"title": "Window sticker", "size": 400}, headers=OWNER)
    assert created.status_code == 201
    qr = created.json()["data"]
    assert qr["image_data_url"].startswith("data:image/png;base64,")

    scan = client.post(
        f"/api/qr-codes/{qr['id']}/track-scan",
        json={"location": {"city": "Porto"}},
        headers={"X-Forwarded-For": "198.51.100.7, 10.0.0.1", "User-Agent": "PhoneBrowser"},
    )
    assert scan.json()["data"] == {"id": qr["id"], "scansCount": 1}

    analytics = client.get(f"/api/qr-codes/{qr['id']}/analytics", headers=OWNER).json()["data"]
    assert analytics["total_scans"] == 1
    assert analytics["recent_scans"][0]["ip_address"] == "198.51.100.7"
    assert analytics["recent_scans"][0]["location"] == {"city": "Porto"}

    updated = client.put(f"/api/qr-codes/{qr['id']}", json={"backgroundColor": "#FFF8E1"}, headers=OWNER)
    assert updated.json()["data"]["background_color"] == "#FFF8E1"

    _assert_error(client.put(f"/api/qr-codes/{qr['id']}", json={"size": 5}, headers=OWNER), 400, "validation_error")
    _assert_error(client.get(f"/api/qr-codes/{qr['id']}", headers={"X-User-Id": "intruder"}), 403, "forbidden")

    assert client.delete(f"/api/qr-codes/{qr['id']}", headers=OWNER).json()["data"]["deleted"] is True
    _assert_error(client.post(f"/api/qr-codes/{qr['id']}/track-scan"), 404, "not_found")


def test_form_template_endpoints(client):
    business_id, customer_id = _setup(client)
    form = {
        "name": "Visit details",
        "fields": [
            {"key": "table", "label": "Table number", "type": "number", "required": True},
            {"key": "visit", "label": "Visit", "type": "select", "options": ["lunch", "dinner"]},
        ],
    }
    created = client.post("/api/form-templates", json=form, headers=OWNER)
    assert created.status_code == 201
    template = created.json()["data"]
    assert template["is_active"] is True

    public = client.get(f"/api/form-templates/public/{business_id}").json()["data"]
    assert public["template"]["id"] == template["id"]
    assert [f["key"] for f in public["template"]["fields"]] == ["table", "visit"]

    resp = client.post(
        "/api/reviews/public",
        json={
            "businessId": business_id,
            "customerId": customer_id,
            "rating": 5,
            "feedback": FEEDBACK,
            "formData": {"visit": "brunch"},
        },
    )
    errors = _assert_error(resp, 400, "validation_error")["error"]["details"]["errors"]
    assert "formData.table: required" in errors

    too_many = {"name": "Long", "fields": [{"key": f"extra{i}", "label": f"Extra {i}"} for i in range(4)]}
    body = _assert_error(client.post("/api/form-templates", json=too_many, headers=OWNER), 403, "entitlement_denied")
    assert body["error"]["details"]["limit"] == 3
    assert body["error"]["details"]["requested"] == 4

    _assert_error(client.get(f"/api/form-templates/{template['id']}", headers={"X-User-Id": "intruder"}), 403, "forbidden")
    assert client.delete(f"/api/form-templates/{template['id']}", headers=OWNER).json()["data"]["deleted"] is True
    assert client.get(f"/api/form-templates/public/{business_id}").json()["data"]["template"] is None


def test_super_admin_requires_credentials(client):
    _assert_error(client.get("/api/super-admin/reviews/any"), 401, "unauthorized")
    _assert_error(client.get("/api/super-admin/reviews/any", headers={"X-Admin-Key": "wrong"}), 401, "unauthorized")

    owner_token = _token({"sub": "owner-1"})
    resp = client.get("/api/super-admin/reviews/any", headers={"Authorization": f"Bearer {owner_token}"})
    _assert_error(resp, 403, "http_error")


def test_super_admin_unconfigured_is_503(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", None)
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", None)
    _assert_error(client.get("/api/super-admin/reviews/any"), 503, "http_error")


def test_super_admin_moderation(client, admin_headers):
    business_id, customer_id = _setup(client)
    review_id = _submit(client, business_id, customer_id).json()["data"]["id"]

    flagged = client.put(f"/api/super-admin/reviews/{review_id}/moderate", json={"action": "FLAG"}, headers=admin_headers)
    assert flagged.status_code == 200
    assert flagged.json()["data"]["is_flagged"] is True
    assert flagged.json()["data"]["moderated_by"].startswith("key:")

    deleted = client.put(
        f"/api/super-admin/reviews/{review_id}/moderate",
        json={"action": "DELETE", "notes": "abusive"},
        headers=admin_headers,
    )
    assert deleted.json()["data"]["is_deleted"] is True

    _assert_error(client.get(f"/api/reviews/{review_id}", headers=OWNER), 404, "not_found")

    detail = client.get(f"/api/super-admin/reviews/{review_id}", headers=admin_headers).json()["data"]
    assert detail["review"]["moderator_notes"] == "abusive"

    export = client.get(f"/api/super-admin/businesses/{business_id}/export", headers=admin_headers).json()["data"]
    assert export["totalReviews"] == 1
    assert export["deletedReviews"] == 1

    bad = client.put(f"/api/super-admin/reviews/{review_id}/moderate", json={"action": "BAN"}, headers=admin_headers)
    _assert_error(bad, 400, "validation_error")


def test_moderation_queue_and_bulk(client, admin_headers):
    business_id, customer_id = _setup(client)
    first = _submit(client, business_id, customer_id).json()["data"]["id"]
    second = _submit(client, business_id, customer_id).json()["data"]["id"]
    client.put(f"/api/super-admin/reviews/{second}/moderate", json={"action": "FLAG"}, headers=admin_headers)

    queue = client.get("/api/super-admin/moderation/queue", headers=admin_headers).json()
    assert [r["id"] for r in queue["data"]] == [second, first]

    flagged = client.get("/api/super-admin/moderation/queue", params={"flagged": "true"}, headers=admin_headers)
    assert [r["id"] for r in flagged.json()["data"]] == [second]

    bulk = client.post(
        "/api/super-admin/moderation/bulk",
        json={"reviewIds": [first, second, "missing"], "action": "approve"},
        headers=admin_headers,
    )
    assert bulk.status_code == 200
    assert bulk.json()["data"] == {"action": "APPROVE", "moderated": [first, second], "missing": ["missing"]}

    approved = client.get("/api/super-admin/moderation/queue", params={"status": "APPROVED"}, headers=admin_headers)
    assert approved.json()["count"] == 2

    empty = client.post("/api/super-admin/moderation/bulk", json={"reviewIds": [], "action": "FLAG"}, headers=admin_headers)
    _assert_error(empty, 400, "validation_error")
    _assert_error(client.get("/api/super-admin/moderation/queue", headers=OWNER), 401, "unauthorized")


def test_super_admin_jwt(client):
    business_id, customer_id = _setup(client)
    review_id = _submit(client, business_id, customer_id).json()["data"]["id"]
    token = _token({"sub": "ops-1", "role": "super_admin", "email": "ops@example.com"})

    resp = client.put(
        f"/api/super-admin/reviews/{review_id}/moderate",
        json={"action": "APPROVE"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "APPROVED"
    assert resp.json()["data"]["moderated_by"] == "ops-1"


def test_super_admin_expiry_endpoint(client, admin_headers):
    _setup(client)
    client.post("/api/subscription/upgrade", json={"planId": "FREE"}, headers=OWNER)
    resp = client.post(
        "/api/super-admin/subscriptions/expire",
        params={"now": "2099-01-01T00:00:00+00:00"},
        headers=admin_headers,
    )
    assert resp.json()["data"] == {"expired": 1}


def test_business_analytics_endpoint(client):
    business_id, customer_id = _setup(client)
    _submit(client, business_id, customer_id, rating=4)
    stats = client.get(f"/api/reviews/business/{business_id}/analytics", headers=OWNER).json()["data"]
    assert stats["totalReviews"] == 1
    assert stats["averageRating"] == 4.0
