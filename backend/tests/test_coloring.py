from io import BytesIO

import pytest
from bson import ObjectId

from backend.tests.conftest import log_in, make_app


@pytest.fixture
def folder(admin_client):
    response = admin_client.post(
        "/api/coloring-folders", json={"name": "Animal Friends", "description": "Cute"}
    )
    assert response.status_code == 201
    return response.get_json()["folder"]


def upload(client, url, folder_id, files, field="file", **form):
    data = {"folder": folder_id, **form}
    if field == "file":
        data["file"] = files
    else:
        data["files"] = files
    return client.post(url, data=data, content_type="multipart/form-data")


def image(name):
    return (BytesIO(b"\x89PNG fake image"), name)


class TestFolders:
    def test_create_assigns_slug_and_order(self, admin_client, folder):
        assert folder["slug"] == "animal-friends"
        assert folder["order"] == 1
        second = admin_client.post(
            "/api/coloring-folders", json={"name": "Ocean"}
        ).get_json()["folder"]
        assert second["order"] == 2

    def test_name_required_and_unique(self, admin_client, folder):
        assert admin_client.post("/api/coloring-folders", json={}).status_code == 400
        assert admin_client.post(
            "/api/coloring-folders", json={"name": "animal  friends"}
        ).status_code == 409

    def test_public_list_counts_pages_and_hides_inactive(self, admin_client, client, folder):
        hidden = admin_client.post(
            "/api/coloring-folders", json={"name": "Hidden"}
        ).get_json()["folder"]
        admin_client.put(f"/api/coloring-folders/{hidden['_id']}", json={"isActive": False})
        upload(admin_client, "/api/coloring-pages", folder["_id"], image("cat.png"))

        folders = client.get("/api/coloring-folders").get_json()["folders"]
        assert [(item["slug"], item["pageCount"]) for item in folders] == [
            ("animal-friends", 1)
        ]

        everything = admin_client.get("/api/coloring-folders?all=true").get_json()["folders"]
        assert len(everything) == 2
        assert client.get("/api/coloring-folders?all=true").get_json()["folders"] == folders

    def test_rename_rederives_slug(self, admin_client, folder):
        admin_client.post("/api/coloring-folders", json={"name": "Ocean"})
        response = admin_client.put(
            f"/api/coloring-folders/{folder['_id']}", json={"name": "Farm Animals"}
        )
        assert response.get_json()["folder"]["slug"] == "farm-animals"
        collision = admin_client.put(
            f"/api/coloring-folders/{folder['_id']}", json={"name": "Ocean"}
        )
        assert collision.status_code == 409

    def test_get_folder_with_pages(self, admin_client, client, folder):
        upload(admin_client, "/api/coloring-pages", folder["_id"], image("cat.png"))
        body = client.get(f"/api/coloring-folders/{folder['_id']}").get_json()
        assert body["folder"]["name"] == "Animal Friends"
        assert [page["title"] for page in body["pages"]] == ["cat"]

        assert client.get(f"/api/coloring-folders/{ObjectId()}").status_code == 404
        assert client.get("/api/coloring-folders/not-an-id").status_code == 400

    def test_delete_cascades_to_pages(self, admin_client, database, media_stub, folder):
        for name in ("a.png", "b.png"):
            upload(admin_client, "/api/coloring-pages", folder["_id"], image(name))

        response = admin_client.delete(f"/api/coloring-folders/{folder['_id']}")
        assert response.get_json() == {"success": True, "deletedPages": 2}
        assert database.coloringpages.count_documents({}) == 0
        assert database.coloringfolders.count_documents({}) == 0
        assert media_stub.delete_image.call_count == 2
        assert admin_client.delete(f"/api/coloring-folders/{folder['_id']}").status_code == 404


class TestPages:
    def test_upload_single_page(self, admin_client, media_stub, folder):
        response = upload(
            admin_client, "/api/coloring-pages", folder["_id"], image("happy cat.png")
        )
        assert response.status_code == 201
        page = response.get_json()["page"]
        assert page["title"] == "happy cat"
        assert page["order"] == 1
        assert page["folder"] == folder["_id"]
        assert media_stub.upload_image.call_args[0][1] == f"noble-mosaic/coloring/{folder['_id']}"

    def test_explicit_title(self, admin_client, folder):
        response = upload(
            admin_client,
            "/api/coloring-pages",
            folder["_id"],
            image("x.png"),
            title="Sleepy Fox",
        )
        assert response.get_json()["page"]["title"] == "Sleepy Fox"

    def test_upload_validation(self, admin_client, folder):
        no_file = admin_client.post(
            "/api/coloring-pages",
            data={"folder": folder["_id"]},
            content_type="multipart/form-data",
        )
        assert no_file.status_code == 400
        assert upload(admin_client, "/api/coloring-pages", "", image("a.png")).status_code == 400
        assert upload(
            admin_client, "/api/coloring-pages", str(ObjectId()), image("a.png")
        ).status_code == 404
        assert upload(
            admin_client, "/api/coloring-pages", folder["_id"], image("notes.txt")
        ).status_code == 400

    def test_batch_collects_failures(self, admin_client, folder):
        upload(admin_client, "/api/coloring-pages", folder["_id"], image("first.png"))
        response = upload(
            admin_client,
            "/api/coloring-pages/batch",
            folder["_id"],
            [image("a.png"), image("notes.txt"), image("b.jpg")],
            field="files",
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body["uploaded"] == 2
        assert body["failed"] == 1
        assert body["errors"] == ["notes.txt"]
        assert [page["order"] for page in body["pages"]] == [2, 3]

    def test_batch_without_files(self, admin_client, folder):
        response = admin_client.post(
            "/api/coloring-pages/batch",
            data={"folder": folder["_id"]},
            content_type="multipart/form-data",
        )
        assert response.status_code == 400

    def test_list_populates_folder(self, admin_client, client, folder):
        upload(admin_client, "/api/coloring-pages", folder["_id"], image("cat.png"))
        pages = client.get(f"/api/coloring-pages?folder={folder['_id']}").get_json()["pages"]
        assert pages[0]["folder"] == {
            "_id": folder["_id"],
            "name": "Animal Friends",
            "slug": "animal-friends",
        }

    def test_delete_page(self, admin_client, media_stub, folder):
        page = upload(
            admin_client, "/api/coloring-pages", folder["_id"], image("cat.png")
        ).get_json()["page"]
        assert admin_client.delete(f"/api/coloring-pages/{page['_id']}").get_json() == {
            "success": True
        }
        media_stub.delete_image.assert_called_once_with(page["publicId"])
        assert admin_client.delete(f"/api/coloring-pages/{page['_id']}").status_code == 404

    def test_failed_insert_removes_uploaded_asset(self, admin_client, database, media_stub, folder):
        database.coloringpages.create_index("imageUrl", unique=True)
        response = upload(
            admin_client,
            "/api/coloring-pages/batch",
            folder["_id"],
            [image("cat.png"), image("cat.png")],
            field="files",
        )
        body = response.get_json()
        assert body["uploaded"] == 1
        assert body["errors"] == ["cat.png"]
        media_stub.delete_image.assert_called_once_with(
            f"noble-mosaic/coloring/{folder['_id']}/cat"
        )


def test_folder_delete_cascades_without_cloudinary(database, outbox, unconfigured_cloudinary):
    admin = log_in(make_app(database))
    folder = admin.post("/api/coloring-folders", json={"name": "Animals"}).get_json()["folder"]
    database.coloringpages.insert_many(
        [
            {"folder": ObjectId(folder["_id"]), "order": index, "publicId": f"pages/p{index}"}
            for index in range(2)
        ]
    )

    response = admin.delete(f"/api/coloring-folders/{folder['_id']}")
    assert response.status_code == 200
    assert response.get_json() == {"success": True, "deletedPages": 2}
    assert database.coloringpages.count_documents({}) == 0
    assert database.coloringfolders.count_documents({}) == 0
