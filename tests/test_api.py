"""
HTTP-level tests: routing, auth gating, uploads and error mapping.
"""
import json
import os

import pytest
from bson import ObjectId

import uploads

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def create_category(client, headers, name="Clothing"):
    response = client.post("/api/categories", data={"name": name}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def create_product(client, headers, category_id, code="TSHIRT001", **extra):
    data = {
        "name": "Plain Cotton T-Shirt",
        "productCode": code,
        "description": "Comfortable plain cotton t-shirt",
        "category": category_id,
    }
    data.update(extra)
    return client.post("/api/products", data=data, headers=headers)


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "API is running..."}


class TestUsers:
    def test_register_login_profile(self, client):
        response = client.post("/api/users", json={"name": "Raj", "email": "raj@example.com", "password": "pw"})
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "user"

        login = client.post("/api/users/login", json={"email": "raj@example.com", "password": "pw"})
        assert login.status_code == 200
        token = login.json()["token"]

        profile = client.get("/api/users/profile", headers={"Authorization": f"Bearer {token}"})
        assert profile.status_code == 200
        assert profile.json()["email"] == "raj@example.com"
        assert "password" not in profile.json()

    def test_duplicate_email(self, client, user_headers):
        response = client.post("/api/users", json={"name": "Raj", "email": "raj@example.com", "password": "x"})
        assert response.status_code == 400

    def test_bad_password(self, client, user_headers):
        response = client.post("/api/users/login", json={"email": "raj@example.com", "password": "wrong"})
        assert response.status_code == 401

    def test_admin_needs_secret(self, client):
        response = client.post("/api/users/admin", json={
            "name": "Eve", "email": "eve@example.com", "password": "pw", "secret": "guess",
        })
        assert response.status_code == 403

    @pytest.mark.parametrize("name", ["", "x" * 81])
    def test_rejects_bad_name_length(self, client, name):
        response = client.post("/api/users", json={"name": name, "email": "raj@example.com", "password": "pw"})
        assert response.status_code == 422
        assert client.post("/api/users/login", json={"email": "raj@example.com", "password": "pw"}).status_code == 401

    def test_admin_role(self, client, admin_headers):
        assert client.get("/api/users/profile", headers=admin_headers).json()["role"] == "admin"

    def test_invalid_token(self, client):
        response = client.get("/api/users/profile", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401


class TestAccessControl:
    def test_anonymous_cannot_write(self, client):
        assert client.post("/api/categories", data={"name": "Clothing"}).status_code in (401, 403)

    def test_standard_user_cannot_write(self, client, user_headers):
        response = client.post("/api/categories", data={"name": "Clothing"}, headers=user_headers)
        assert response.status_code == 403
        response = client.post("/api/subcategories", json={"name": "X", "category": str(ObjectId())},
                               headers=user_headers)
        assert response.status_code == 403

    def test_reads_are_public(self, client, admin_headers):
        create_category(client, admin_headers)
        assert len(client.get("/api/categories").json()) == 1
        assert client.get("/api/products").json()["count"] == 0


class TestCategoryRoutes:
    def test_crud(self, client, admin_headers):
        category = create_category(client, admin_headers)
        assert client.get(f"/api/categories/{category['id']}").json()["name"] == "Clothing"

        updated = client.put(f"/api/categories/{category['id']}", data={"description": "Apparel"},
                             headers=admin_headers)
        assert updated.status_code == 200
        assert updated.json()["name"] == "Clothing"
        assert updated.json()["description"] == "Apparel"

        deleted = client.delete(f"/api/categories/{category['id']}", headers=admin_headers)
        assert deleted.json() == {"message": "Category removed"}
        assert client.get(f"/api/categories/{category['id']}").status_code == 404

    def test_duplicate(self, client, admin_headers):
        create_category(client, admin_headers)
        response = client.post("/api/categories", data={"name": "Clothing"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Category already exists"}

    def test_image_upload(self, client, admin_headers, tmp_path):
        response = client.post("/api/categories", data={"name": "Clothing"},
                               files={"image": ("photo.png", PNG, "image/png")}, headers=admin_headers)
        assert response.status_code == 201
        image = response.json()["image"]
        assert image.startswith("/uploads/image-") and image.endswith(".png")
        assert os.path.exists(os.path.join(str(tmp_path), os.path.basename(image)))

    def test_rejects_non_images(self, client, admin_headers):
        response = client.post("/api/categories", data={"name": "Clothing"},
                               files={"image": ("notes.txt", b"hello", "text/plain")}, headers=admin_headers)
        assert response.status_code == 400
        assert client.get("/api/categories").json() == []


class TestSubCategoryRoutes:
    def test_crud(self, client, admin_headers):
        category = create_category(client, admin_headers)
        response = client.post("/api/subcategories", json={"name": "T-Shirts", "category": category["id"]},
                               headers=admin_headers)
        assert response.status_code == 201
        sub = response.json()

        listed = client.get(f"/api/subcategories/category/{category['id']}").json()
        assert listed[0]["category"] == {"id": category["id"], "name": "Clothing"}
        assert client.get(f"/api/subcategories/{sub['id']}").status_code == 200

        renamed = client.put(f"/api/subcategories/{sub['id']}", json={"name": "Tees"}, headers=admin_headers)
        assert renamed.json()["name"] == "Tees"

        assert client.delete(f"/api/subcategories/{sub['id']}", headers=admin_headers).json() == {
            "message": "Sub-category removed"
        }

    def test_parent_missing(self, client, admin_headers):
        response = client.post("/api/subcategories", json={"name": "T-Shirts", "category": str(ObjectId())},
                               headers=admin_headers)
        assert response.status_code == 404
        assert response.json() == {"message": "Parent category not found"}


class TestProductRoutes:
    def test_create_with_images_and_variations(self, client, admin_headers):
        category = create_category(client, admin_headers)
        variations = json.dumps([{"size": "M", "color": "Blue", "price": 499}])
        response = client.post(
            "/api/products",
            data={
                "name": "Plain Cotton T-Shirt",
                "productCode": "TSHIRT001",
                "description": "Comfortable plain cotton t-shirt",
                "category": category["id"],
                "variations": variations,
            },
            files=[("images", ("a.png", PNG, "image/png")), ("images", ("b.jpg", PNG, "image/jpeg"))],
            headers=admin_headers,
        )
        assert response.status_code == 201, response.text
        product = response.json()
        assert len(product["images"]) == 2
        assert product["variations"][0]["price"] == 499

        more = client.put(f"/api/products/{product['id']}",
                          files=[("images", ("c.gif", PNG, "image/gif"))], headers=admin_headers)
        assert more.status_code == 200, more.text
        assert more.json()["images"][:2] == product["images"]
        assert len(more.json()["images"]) == 3

    def test_too_many_images(self, client, admin_headers):
        category = create_category(client, admin_headers)
        files = [("images", (f"{i}.png", PNG, "image/png")) for i in range(uploads.MAX_PRODUCT_IMAGES + 1)]
        response = client.post("/api/products", data={
            "name": "Shirt", "productCode": "C1", "description": "d", "category": category["id"],
        }, files=files, headers=admin_headers)
        assert response.status_code == 400

    def test_error_mapping(self, client, admin_headers):
        category = create_category(client, admin_headers)
        assert create_product(client, admin_headers, category["id"]).status_code == 201

        duplicate = create_product(client, admin_headers, category["id"])
        assert duplicate.status_code == 400
        assert duplicate.json() == {"message": "Product with this code already exists"}

        missing = create_product(client, admin_headers, str(ObjectId()), code="X1")
        assert missing.status_code == 404
        assert missing.json() == {"message": "Category not found"}

        mismatch = create_product(client, admin_headers, category["id"], code="X2", subCategory=str(ObjectId()))
        assert mismatch.status_code == 404

        invalid = create_product(client, admin_headers, category["id"], code="X3", variations="[{")
        assert invalid.status_code == 400

        assert client.get(f"/api/products/{ObjectId()}").status_code == 404

    def test_listing(self, client, admin_headers):
        category = create_category(client, admin_headers)
        for i in range(12):
            assert create_product(client, admin_headers, category["id"], code=f"P{i}").status_code == 201

        first = client.get("/api/products").json()
        assert (len(first["items"]), first["page"], first["pages"], first["count"]) == (10, 1, 2, 12)
        assert first["items"][0]["category"] == {"id": category["id"], "name": "Clothing"}

        second = client.get("/api/products", params={"page": 2, "keyword": "COTTON"}).json()
        assert len(second["items"]) == 2

        small = client.get("/api/products", params={"pageSize": 5, "page": 3}).json()
        assert (len(small["items"]), small["pages"]) == (2, 3)

    def test_delete(self, client, admin_headers):
        category = create_category(client, admin_headers)
        product = create_product(client, admin_headers, category["id"]).json()
        response = client.delete(f"/api/products/{product['id']}", headers=admin_headers)
        assert response.json() == {"message": "Product removed"}
        assert client.delete(f"/api/products/{product['id']}", headers=admin_headers).status_code == 404


class TestVariationRoutes:
    def test_lifecycle(self, client, admin_headers):
        category = create_category(client, admin_headers)
        product = create_product(client, admin_headers, category["id"]).json()
        base = f"/api/products/{product['id']}/variations"

        added = client.post(base, json={"size": "M", "price": 499, "discount": 10}, headers=admin_headers)
        assert added.status_code == 201
        variation = added.json()["variations"][0]
        assert (variation["discount"], variation["stock"]) == (10, 0)

        updated = client.put(f"{base}/{variation['id']}", json={"price": 0}, headers=admin_headers)
        assert updated.status_code == 200
        assert updated.json()["variations"][0]["price"] == 0
        assert updated.json()["variations"][0]["discount"] == 10

        removed = client.delete(f"{base}/{variation['id']}", headers=admin_headers)
        assert removed.json()["message"] == "Variation removed"
        assert removed.json()["product"]["variations"] == []

        gone = client.put(f"{base}/{variation['id']}", json={"price": 1}, headers=admin_headers)
        assert gone.status_code == 404
        assert gone.json() == {"message": "Variation not found"}

    def test_product_missing(self, client, admin_headers):
        response = client.post(f"/api/products/{ObjectId()}/variations", json={"price": 1}, headers=admin_headers)
        assert response.status_code == 404
        assert response.json() == {"message": "Product not found"}
