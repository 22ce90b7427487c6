from datetime import datetime

import pytest
from bson import ObjectId

from backend.tests.conftest import log_in, make_app

BOOK = {
    "title": "90's Vibes Book 1",
    "coverImage": "https://res.cloudinary.com/demo/image/upload/v1/secrets/cover.png",
    "secretKey": "ab12",
    "amazonUrl": "https://www.amazon.com/dp/vibes",
}


def image_payload(book_id, index, **extra):
    return {
        "secretBook": book_id,
        "colorImageUrl": f"https://res.cloudinary.com/demo/image/upload/v1/secrets/c{index}.png",
        "uncolorImageUrl": f"https://res.cloudinary.com/demo/image/upload/v1/secrets/u{index}.png",
        **extra,
    }


@pytest.fixture
def book(admin_client):
    response = admin_client.post("/api/admin/secret-books", json=BOOK)
    assert response.status_code == 201
    return response.get_json()["book"]


class TestSecretBookAdmin:
    def test_create_uppercases_key_and_derives_slug(self, book):
        assert book["slug"] == "90-s-vibes-book-1"
        assert book["secretKey"] == "AB12"
        assert book["isActive"] is True

    def test_explicit_slug_is_used(self, admin_client):
        response = admin_client.post(
            "/api/admin/secret-books", json={**BOOK, "slug": "Vibes Special"}
        )
        assert response.get_json()["book"]["slug"] == "vibes-special"

    def test_key_longer_than_six_is_rejected(self, admin_client):
        response = admin_client.post(
            "/api/admin/secret-books", json={**BOOK, "secretKey": "TOOLONG"}
        )
        assert response.status_code == 400

    def test_duplicate_slug_conflicts(self, admin_client, book):
        assert admin_client.post("/api/admin/secret-books", json=BOOK).status_code == 409

    def test_update_rederives_slug(self, admin_client, book):
        response = admin_client.put(
            f"/api/admin/secret-books/{book['_id']}",
            json={"title": "Retro Vibes", "secretKey": "xy9"},
        )
        assert response.status_code == 200
        updated = response.get_json()["book"]
        assert updated["slug"] == "retro-vibes"
        assert updated["secretKey"] == "XY9"

    def test_update_unknown_and_invalid_ids(self, admin_client):
        assert admin_client.put(
            f"/api/admin/secret-books/{ObjectId()}", json={"title": "x"}
        ).status_code == 404
        assert admin_client.put(
            "/api/admin/secret-books/not-an-id", json={"title": "x"}
        ).status_code == 400

    def test_list_is_admin_only(self, admin_client, client, book):
        assert client.get("/api/admin/secret-books").status_code == 401
        books = admin_client.get("/api/admin/secret-books").get_json()["books"]
        assert [item["slug"] for item in books] == [book["slug"]]

    def test_delete_cascades(self, admin_client, database, media_stub, book):
        for index in range(3):
            admin_client.post("/api/admin/secrets", json=image_payload(book["_id"], index))

        response = admin_client.delete(f"/api/admin/secret-books/{book['_id']}")
        assert response.status_code == 200
        assert response.get_json()["deletedSecrets"] == 3
        assert database.secretimages.count_documents({}) == 0
        assert database.secretbooks.count_documents({}) == 0
        media_stub.delete_image_urls.assert_called_once_with([BOOK["coverImage"]])
        media_stub.delete_folder.assert_called_once_with("secrets/90-s-vibes-book-1")


class TestSecretImagesAdmin:
    def test_orders_increase_per_book(self, admin_client, book):
        orders = [
            admin_client.post(
                "/api/admin/secrets", json=image_payload(book["_id"], index)
            ).get_json()["secret"]["order"]
            for index in range(3)
        ]
        assert orders == [1, 2, 3]

    def test_legacy_product_key(self, admin_client, book):
        payload = image_payload(book["_id"], 1)
        payload["product"] = payload.pop("secretBook")
        response = admin_client.post("/api/admin/secrets", json=payload)
        assert response.status_code == 201
        assert response.get_json()["secret"]["secretBook"] == book["_id"]

    def test_parent_must_exist(self, admin_client):
        assert admin_client.post(
            "/api/admin/secrets", json=image_payload("bad-id", 1)
        ).status_code == 400
        assert admin_client.post(
            "/api/admin/secrets", json=image_payload(str(ObjectId()), 1)
        ).status_code == 404

    def test_images_required(self, admin_client, book):
        response = admin_client.post(
            "/api/admin/secrets", json={"secretBook": book["_id"]}
        )
        assert response.status_code == 400

    def test_list_populates_book(self, admin_client, book):
        admin_client.post("/api/admin/secrets", json=image_payload(book["_id"], 1))
        secrets = admin_client.get(f"/api/admin/secrets?book={book['_id']}").get_json()["secrets"]
        assert secrets[0]["secretBook"] == {
            "_id": book["_id"],
            "title": BOOK["title"],
            "slug": book["slug"],
        }

    def test_update_cleans_replaced_image(self, admin_client, media_stub, book):
        secret = admin_client.post(
            "/api/admin/secrets", json=image_payload(book["_id"], 1)
        ).get_json()["secret"]
        new_url = "https://res.cloudinary.com/demo/image/upload/v1/secrets/new.png"
        response = admin_client.put(
            f"/api/admin/secrets/{secret['_id']}", json={"colorImageUrl": new_url, "order": 9}
        )
        assert response.get_json()["secret"]["order"] == 9
        media_stub.delete_image_urls.assert_called_once_with([secret["colorImageUrl"]])

    def test_delete_one(self, admin_client, media_stub, book):
        secret = admin_client.post(
            "/api/admin/secrets", json=image_payload(book["_id"], 1)
        ).get_json()["secret"]
        assert admin_client.delete(f"/api/admin/secrets/{secret['_id']}").status_code == 200
        media_stub.delete_image_urls.assert_called_once_with(
            [secret["colorImageUrl"], secret["uncolorImageUrl"]]
        )
        assert admin_client.delete(f"/api/admin/secrets/{secret['_id']}").status_code == 404

    def test_bulk_delete_by_book(self, admin_client, database, book):
        for index in range(2):
            admin_client.post("/api/admin/secrets", json=image_payload(book["_id"], index))

        assert admin_client.delete("/api/admin/secrets").status_code == 400
        response = admin_client.delete(f"/api/admin/secrets?bookId={book['_id']}")
        assert response.get_json()["deleted"] == 2
        assert database.secretimages.count_documents({}) == 0


class TestPublicSecrets:
    def test_listing_shows_active_books_only(self, admin_client, client, book):
        admin_client.post(
            "/api/admin/secret-books",
            json={**BOOK, "title": "Hidden Book", "isActive": False},
        )
        body = client.get("/api/secrets").get_json()
        assert [item["slug"] for item in body["books"]] == [book["slug"]]
        assert body["products"] == body["books"]
        assert "secretKey" not in body["books"][0]

    def test_wrong_key_gets_summary_only(self, admin_client, client, book):
        admin_client.post("/api/admin/secrets", json=image_payload(book["_id"], 1))

        response = client.get(f"/api/secrets/{book['slug']}?key=nope")
        assert response.status_code == 403
        body = response.get_json()
        assert body["requiresKey"] is True
        assert body["product"]["previewImage"].endswith("/u1.png")
        assert "secrets" not in body

    def test_key_is_case_insensitive(self, admin_client, client, book):
        admin_client.post("/api/admin/secrets", json=image_payload(book["_id"], 1))
        response = client.get(f"/api/secrets/{book['slug']}?key=ab12")
        assert response.status_code == 200
        assert len(response.get_json()["secrets"]) == 1

    def test_open_book_needs_no_key(self, admin_client, client):
        open_book = admin_client.post(
            "/api/admin/secret-books", json={**BOOK, "title": "Open Book", "secretKey": ""}
        ).get_json()["book"]
        assert client.get(f"/api/secrets/{open_book['slug']}").status_code == 200

    def test_secrets_ordered_and_inactive_hidden(self, admin_client, client, database, book):
        admin_client.post("/api/admin/secrets", json=image_payload(book["_id"], 1, order=2))
        admin_client.post("/api/admin/secrets", json=image_payload(book["_id"], 2, order=1))
        admin_client.post(
            "/api/admin/secrets", json=image_payload(book["_id"], 3, order=0, isActive=False)
        )
        database.secretimages.update_many({}, {"$set": {"createdAt": datetime(2024, 1, 1)}})

        body = client.get(f"/api/secrets/{book['slug']}?key=AB12").get_json()
        assert [secret["order"] for secret in body["secrets"]] == [1, 2]
        assert body["product"]["previewImage"].endswith("/u2.png")

    def test_unknown_or_inactive_book(self, admin_client, client, book):
        assert client.get("/api/secrets/nope").status_code == 404
        admin_client.put(f"/api/admin/secret-books/{book['_id']}", json={"isActive": False})
        assert client.get(f"/api/secrets/{book['slug']}?key=AB12").status_code == 404


class TestDeleteWithoutCloudinary:
    @pytest.fixture
    def live_admin(self, database, outbox, unconfigured_cloudinary):
        return log_in(make_app(database))

    def test_book_delete_still_cascades(self, live_admin, database):
        book = live_admin.post("/api/admin/secret-books", json=BOOK).get_json()["book"]
        for index in range(3):
            live_admin.post("/api/admin/secrets", json=image_payload(book["_id"], index))

        response = live_admin.delete(f"/api/admin/secret-books/{book['_id']}")
        assert response.status_code == 200
        assert response.get_json()["deletedSecrets"] == 3
        assert database.secretbooks.count_documents({}) == 0
        assert database.secretimages.count_documents({}) == 0

    def test_single_image_delete_succeeds(self, live_admin, database):
        book = live_admin.post("/api/admin/secret-books", json=BOOK).get_json()["book"]
        secret = live_admin.post(
            "/api/admin/secrets", json=image_payload(book["_id"], 1)
        ).get_json()["secret"]

        assert live_admin.delete(f"/api/admin/secrets/{secret['_id']}").status_code == 200
        assert database.secretimages.count_documents({}) == 0
