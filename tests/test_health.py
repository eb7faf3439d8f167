def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_api_v1_packages_is_public(client):
    response = client.get("/api/v1/promotions/packages")
    assert response.status_code == 200
    assert response.json() == {"packages": []}


def test_api_v1_promotions_requires_auth(client):
    response = client.get("/api/v1/promotions/")
    assert response.status_code in (401, 403)


def test_api_v1_credits_requires_auth(client):
    response = client.get("/api/v1/credits/balance")
    assert response.status_code in (401, 403)
