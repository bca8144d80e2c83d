"""Server-side verification API.

Start with: python -m face_identity api --port 8000

Endpoints:
    GET    /api/v1/health                       - Health check
    POST   /api/v1/embeddings                   - Embed the face in an uploaded image
    POST   /api/v1/match                        - Match a submitted embedding
    POST   /api/v1/verify                       - Embed and match an uploaded image
    GET    /api/v1/registrations                - List pending registrations
    POST   /api/v1/registrations                - Submit pose images for registration
    POST   /api/v1/registrations/{id}/approve   - Approve a pending registration
    DELETE /api/v1/registrations/{id}           - Reject a pending registration
    GET    /api/v1/identities                   - List registered identities
    DELETE /api/v1/identities/{key}             - Remove an identity
    POST   /api/v1/identities/{key}/learn       - Refine an identity from history
"""

import logging
from typing import List, Optional

import cv2
import numpy as np
from fastapi import APIRouter, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from . import __version__
from .adaptive import AdaptiveRefiner
from .errors import FaceIdentityError, InvalidImage, NoFaceDetected
from .gallery import GUIDED_POSES
from .normalization import validate_embedding
from .pipeline import FaceIdentityEngine
from .registration import RegistrationAggregator, promote_pending, reject_pending
from .storage import Storage, open_storage

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Schemas
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    version: str
    detector: Optional[str]
    registered_identities: int
    pending_registrations: int


class EmbeddingResponse(BaseModel):
    embedding: List[float]
    stable_id: str
    face: Optional[dict] = None


class MatchRequest(BaseModel):
    embedding: List[float] = Field(..., description="Observed embedding (512 values)")


class MatchResponse(BaseModel):
    identity_key: Optional[str]
    name: Optional[str]
    confidence: float
    tier: str
    is_potential_match: bool
    is_ambiguous: bool
    potential_matches: List[dict]
    stable_id: Optional[str] = None


class RegistrationResponse(BaseModel):
    registration_id: str
    identity_key: str
    name: str
    angles: int
    skipped_poses: List[int]
    status: str


class IdentitySummary(BaseModel):
    identity_key: str
    name: str
    angles: int
    metadata: dict


class IdentityResponse(BaseModel):
    identities: List[IdentitySummary]
    total: int


# =============================================================================
# Helpers
# =============================================================================

def _http_error(error: FaceIdentityError) -> HTTPException:
    """Map an engine error to an HTTP error."""
    if isinstance(error, InvalidImage):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, NoFaceDetected):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=422, detail=str(error))


def _decode_image(content: bytes) -> Optional[np.ndarray]:
    """Decode image bytes (BGR, as returned by OpenCV), or None if unreadable."""
    if not content:
        return None
    try:
        return cv2.imdecode(np.frombuffer(content, np.uint8), cv2.IMREAD_COLOR)
    except cv2.error as e:
        logger.warning(f"Could not decode upload: {e}")
        return None


async def _read_image(file: UploadFile) -> np.ndarray:
    """Decode an uploaded image, rejecting empty or unreadable uploads."""
    image = _decode_image(await file.read())
    if image is None:
        raise HTTPException(status_code=400, detail="Invalid image")
    return image


def _identity_summary(entry) -> IdentitySummary:
    return IdentitySummary(
        identity_key=entry.identity_key,
        name=entry.display_name,
        angles=len(entry.angles),
        metadata=entry.metadata,
    )


# =============================================================================
# App Factory
# =============================================================================

def create_app(
    engine: Optional[FaceIdentityEngine] = None,
    storage: Optional[Storage] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        engine: Engine to serve (a Haar cascade engine if None)
        storage: Stores to serve (the configured backend if None)
    """
    if engine is None:
        from .detection import HaarCascadeDetector
        engine = FaceIdentityEngine(detector=HaarCascadeDetector(bgr=True))
    if storage is None:
        storage = open_storage()

    aggregator = RegistrationAggregator(engine, engine.config.registration)
    refiner = AdaptiveRefiner(engine.config.adaptive)

    app = FastAPI(
        title="Face Identity API",
        description="Face embedding, matching and registration service",
        version=__version__,
    )
    app.state.engine = engine
    app.state.storage = storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    router = APIRouter(prefix="/api/v1", tags=["faces"])

    @router.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            detector=engine.detector.name if engine.detector else None,
            registered_identities=len(storage.gallery.list_entries()),
            pending_registrations=len(storage.pending.list_pending()),
        )

    @router.post("/embeddings", response_model=EmbeddingResponse)
    async def create_embedding(file: UploadFile = File(...)):
        """Embed the face in an uploaded image."""
        image = await _read_image(file)
        try:
            result = engine.extract_embedding(image, bgr=True)
        except FaceIdentityError as e:
            raise _http_error(e)

        return EmbeddingResponse(
            embedding=[float(v) for v in result.embedding],
            stable_id=result.stable_id,
            face=result.face.to_dict() if result.face else None,
        )

    @router.post("/match", response_model=MatchResponse)
    async def match_embedding(request: MatchRequest):
        """Match a submitted embedding against the gallery."""
        try:
            embedding = validate_embedding(request.embedding, context="submitted embedding")
            decision = engine.match_embedding(embedding, storage.gallery.list_entries())
        except FaceIdentityError as e:
            raise _http_error(e)

        return MatchResponse(**decision.to_dict(), stable_id=engine.stable_id(embedding))

    @router.post("/verify", response_model=MatchResponse)
    async def verify_image(file: UploadFile = File(...)):
        """Embed the face in an uploaded image and match it against the gallery."""
        image = await _read_image(file)
        try:
            result = engine.extract_embedding(image, bgr=True)
            decision = engine.match_embedding(result.embedding, storage.gallery.list_entries())
        except FaceIdentityError as e:
            raise _http_error(e)

        return MatchResponse(**decision.to_dict(), stable_id=result.stable_id)

    @router.get("/registrations", response_model=List[RegistrationResponse])
    async def list_registrations():
        """List registrations waiting for approval."""
        return [
            RegistrationResponse(
                registration_id=p.registration_id,
                identity_key=p.identity_key,
                name=p.display_name,
                angles=len(p.angles),
                skipped_poses=[int(s) for s in p.skipped_poses],
                status=p.status,
            )
            for p in storage.pending.list_pending()
        ]

    @router.post("/registrations", response_model=RegistrationResponse)
    async def submit_registration(
        identity_key: str = Form(...),
        name: str = Form(...),
        files: List[UploadFile] = File(..., description="Pose images: front, right, left, up, down"),
    ):
        """Submit guided pose images for a new registration."""
        if len(files) > len(GUIDED_POSES):
            raise HTTPException(
                status_code=422,
                detail=f"Expected at most {len(GUIDED_POSES)} pose images, got {len(files)}",
            )

        images = []
        for file in files:
            # Unreadable pose images are skipped like poses without a face
            images.append(_decode_image(await file.read()))

        try:
            pending = aggregator.submit(storage.pending, identity_key, name, images, bgr=True)
        except FaceIdentityError as e:
            raise _http_error(e)

        return RegistrationResponse(
            registration_id=pending.registration_id,
            identity_key=pending.identity_key,
            name=pending.display_name,
            angles=len(pending.angles),
            skipped_poses=[int(s) for s in pending.skipped_poses],
            status=pending.status,
        )

    @router.post("/registrations/{registration_id}/approve", response_model=IdentitySummary)
    async def approve_registration(registration_id: str):
        """Approve a pending registration into the gallery."""
        try:
            entry = promote_pending(storage.pending, storage.gallery, registration_id)
        except FaceIdentityError as e:
            raise _http_error(e)
        if entry is None:
            raise HTTPException(
                status_code=404, detail=f"Registration '{registration_id}' not found"
            )
        return _identity_summary(entry)

    @router.delete("/registrations/{registration_id}")
    async def reject_registration(registration_id: str):
        """Reject a pending registration."""
        if not reject_pending(storage.pending, registration_id):
            raise HTTPException(
                status_code=404, detail=f"Registration '{registration_id}' not found"
            )
        return {"message": f"Rejected registration: {registration_id}"}

    @router.get("/identities", response_model=IdentityResponse)
    async def list_identities():
        """Get all registered identities."""
        entries = storage.gallery.list_entries()
        return IdentityResponse(
            identities=[_identity_summary(e) for e in entries],
            total=len(entries),
        )

    @router.delete("/identities/{identity_key}")
    async def remove_identity(identity_key: str):
        """Remove a registered identity."""
        if not storage.gallery.delete(identity_key):
            raise HTTPException(status_code=404, detail=f"Identity '{identity_key}' not found")
        return {"message": f"Removed identity: {identity_key}"}

    @router.post("/identities/{identity_key}/learn", response_model=IdentitySummary)
    async def learn_identity(identity_key: str):
        """Append a learned angle from the identity's recognition history."""
        if storage.gallery.get(identity_key) is None:
            raise HTTPException(status_code=404, detail=f"Identity '{identity_key}' not found")
        try:
            entry = refiner.refine_identity(identity_key, storage.gallery, storage.history)
        except FaceIdentityError as e:
            raise _http_error(e)
        if entry is None:
            raise HTTPException(
                status_code=409,
                detail="Not enough confident recognitions to learn from",
            )
        return _identity_summary(entry)

    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "name": "Face Identity API",
            "version": __version__,
            "docs": "/docs",
        }

    return app
