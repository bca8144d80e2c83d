"""Tests for the verification API."""

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedDetector


def png_bytes(image):
    ok, buffer = cv2.imencode(".png", image)
    assert ok
    return buffer.tobytes()


@pytest.fixture
def client(engine, storage):
    from face_identity.api import create_app
    return TestClient(create_app(engine=engine, storage=storage))


@pytest.fixture
def pose_files():
    return [
        ("files", (f"pose{i}.png", png_bytes(
            np.random.default_rng(i).integers(0, 256, (200, 200, 3), dtype=np.uint8)
        ), "image/png"))
        for i in range(5)
    ]


class TestHealth:
    """Test cases for the health endpoint."""

    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["registered_identities"] == 0
        assert data["detector"] is None


class TestEmbeddings:
    """Test cases for embedding and matching endpoints."""

    def test_embedding_round_trip(self, client, face_image):
        response = client.post(
            "/api/v1/embeddings",
            files={"file": ("face.png", png_bytes(face_image), "image/png")},
        )
        assert response.status_code == 200
        data = response.json()
        assert len(data["embedding"]) == 512
        assert all(isinstance(v, float) for v in data["embedding"])
        assert data["stable_id"].startswith("face-")

    def test_invalid_image(self, client):
        response = client.post(
            "/api/v1/embeddings",
            files={"file": ("face.png", b"not an image", "image/png")},
        )
        assert response.status_code == 400

    def test_empty_upload(self, client):
        for endpoint in ("/api/v1/embeddings", "/api/v1/verify"):
            response = client.post(endpoint, files={"file": ("face.png", b"", "image/png")})
            assert response.status_code == 400

    def test_no_face_found(self, storage, face_image):
        from face_identity.api import create_app
        from face_identity.pipeline import FaceIdentityEngine

        client = TestClient(create_app(
            engine=FaceIdentityEngine(detector=ScriptedDetector([[]])), storage=storage
        ))
        response = client.post(
            "/api/v1/verify",
            files={"file": ("face.png", png_bytes(face_image), "image/png")},
        )
        assert response.status_code == 404

    def test_low_quality_image(self, client, gray_image):
        response = client.post(
            "/api/v1/embeddings",
            files={"file": ("gray.png", png_bytes(gray_image), "image/png")},
        )
        assert response.status_code == 422

    def test_match_wrong_dimension(self, client):
        response = client.post("/api/v1/match", json={"embedding": [0.1] * 100})
        assert response.status_code == 422

    def test_verify_against_gallery(self, client, storage, engine, face_image):
        from face_identity.gallery import GalleryEntry

        embedding = engine.extract_embedding(face_image[:, :, ::-1].copy(), bgr=True).embedding
        storage.gallery.put(GalleryEntry.from_embedding("alice", "Alice", embedding))

        response = client.post(
            "/api/v1/verify",
            files={"file": ("face.png", png_bytes(face_image[:, :, ::-1].copy()), "image/png")},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["identity_key"] == "alice"
        assert data["tier"] == "high"

    def test_match_embedding(self, client, storage, engine, face_image):
        from face_identity.gallery import GalleryEntry

        embedding = engine.extract_embedding(face_image).embedding
        storage.gallery.put(GalleryEntry.from_embedding("alice", "Alice", embedding))

        response = client.post("/api/v1/match", json={"embedding": embedding.tolist()})
        assert response.status_code == 200
        assert response.json()["name"] == "Alice"


class TestRegistrations:
    """Test cases for the registration workflow endpoints."""

    def test_submit_and_approve(self, client, pose_files):
        response = client.post(
            "/api/v1/registrations",
            data={"identity_key": "alice", "name": "Alice"},
            files=pose_files,
        )
        assert response.status_code == 200
        registration = response.json()
        assert registration["angles"] == 5
        assert registration["status"] == "pending"

        response = client.post(f"/api/v1/registrations/{registration['registration_id']}/approve")
        assert response.status_code == 200
        assert response.json()["angles"] == 5

        identities = client.get("/api/v1/identities").json()
        assert identities["total"] == 1
        assert identities["identities"][0]["identity_key"] == "alice"

    def test_empty_pose_file_is_skipped(self, client, pose_files):
        pose_files[3] = ("files", ("pose3.png", b"", "image/png"))
        response = client.post(
            "/api/v1/registrations",
            data={"identity_key": "alice", "name": "Alice"},
            files=pose_files,
        )
        assert response.status_code == 200
        registration = response.json()
        assert registration["angles"] == 4
        assert registration["skipped_poses"] == [3]

    def test_insufficient_poses(self, client, pose_files):
        response = client.post(
            "/api/v1/registrations",
            data={"identity_key": "alice", "name": "Alice"},
            files=pose_files[:3],
        )
        assert response.status_code == 422

    def test_unknown_ids(self, client):
        assert client.post("/api/v1/registrations/missing/approve").status_code == 404
        assert client.delete("/api/v1/registrations/missing").status_code == 404
        assert client.delete("/api/v1/identities/missing").status_code == 404
        assert client.post("/api/v1/identities/missing/learn").status_code == 404
