"""
Image API routes.

Records are returned in their wire form (camelCase, with ``kind`` and
``apiVersion``). Domain errors are mapped to HTTP statuses by the handlers
registered in ``image_control_tower.api``.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import Field
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.base import get_db
from .codec import encode
from .errors import NotFoundError
from .history import TagEventHistory
from .image import ImageCreate, ImageSignatureCreate
from .primitives import ImageAPIModel, SignatureCondition
from .services import ImageService, ImageStreamService, signature_tracker
from .signatures import SignatureClaims
from .stream import ImageStreamCreate, ImageStreamMapping, ImageStreamSpec

router = APIRouter(prefix="/v1", tags=["images"])


class VerificationRecord(ImageAPIModel):
    """A verifier's report about one signature."""

    condition: SignatureCondition
    claims: Optional[SignatureClaims] = None
    parse_error: Optional[str] = None


class PruneRequest(ImageAPIModel):
    tags: Optional[List[str]] = Field(None, description="Only prune these tags")


def get_audit(db: Session = Depends(get_db)) -> AuditService:
    return AuditService(db, actor_kind="human", actor_id="api")


def get_image_service(
    db: Session = Depends(get_db), audit: AuditService = Depends(get_audit)
) -> ImageService:
    return ImageService(db, audit)


def get_stream_service(
    db: Session = Depends(get_db), audit: AuditService = Depends(get_audit)
) -> ImageStreamService:
    return ImageStreamService(db, audit)


# =============================================================================
# Images
# =============================================================================


@router.post("/images", status_code=status.HTTP_201_CREATED)
def create_image(
    image: ImageCreate, service: ImageService = Depends(get_image_service)
) -> Dict[str, Any]:
    """Register an image. Re-registering identical content is a no-op."""
    return encode(service.create_image(image))


@router.get("/images")
def list_images(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: ImageService = Depends(get_image_service),
) -> List[Dict[str, Any]]:
    return [encode(i) for i in service.list_images(limit=limit, offset=offset)]


@router.get("/images/{name}")
def get_image(name: str, service: ImageService = Depends(get_image_service)) -> Dict[str, Any]:
    image = service.get_image(name)
    if image is None:
        raise NotFoundError("Image", name)
    return encode(image)


@router.delete("/images/{name}", status_code=status.HTTP_204_NO_CONTENT)
def delete_image(name: str, service: ImageService = Depends(get_image_service)) -> None:
    if not service.delete_image(name):
        raise NotFoundError("Image", name)


# =============================================================================
# Signatures
# =============================================================================


@router.post("/images/{name}/signatures", status_code=status.HTTP_201_CREATED)
def attach_signature(
    name: str,
    signature: ImageSignatureCreate,
    db: Session = Depends(get_db),
    audit: AuditService = Depends(get_audit),
) -> Dict[str, Any]:
    """Attach a signature; attaching the same content twice returns the same record."""
    tracker = signature_tracker(db, audit)
    signature_id = tracker.attach_signature(name, signature.type, signature.content)
    return encode(tracker.get(signature_id))


@router.get("/images/{name}/signatures")
def list_signatures(
    name: str,
    db: Session = Depends(get_db),
    audit: AuditService = Depends(get_audit),
) -> List[Dict[str, Any]]:
    return [encode(s) for s in signature_tracker(db, audit).signatures_for(name)]


@router.get("/signatures/{signature_id:path}")
def get_signature(
    signature_id: str,
    db: Session = Depends(get_db),
    audit: AuditService = Depends(get_audit),
) -> Dict[str, Any]:
    return encode(signature_tracker(db, audit).get(signature_id))


@router.post("/verifications/{signature_id:path}")
def record_verification(
    signature_id: str,
    record: VerificationRecord,
    db: Session = Depends(get_db),
    audit: AuditService = Depends(get_audit),
) -> Dict[str, Any]:
    """Record what an external verifier observed about a signature."""
    signature = signature_tracker(db, audit).record_verification(
        signature_id,
        record.condition,
        claims=record.claims,
        parse_error=record.parse_error,
    )
    return encode(signature)


# =============================================================================
# Image streams
# =============================================================================


@router.post("/namespaces/{namespace}/imagestreams", status_code=status.HTTP_201_CREATED)
def create_stream(
    namespace: str,
    stream: ImageStreamCreate,
    service: ImageStreamService = Depends(get_stream_service),
) -> Dict[str, Any]:
    stream = stream.model_copy(update={"namespace": namespace})
    return encode(service.create_stream(stream))


@router.get("/namespaces/{namespace}/imagestreams")
def list_streams(
    namespace: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: ImageStreamService = Depends(get_stream_service),
) -> List[Dict[str, Any]]:
    return [encode(s) for s in service.list_streams(namespace, limit=limit, offset=offset)]


@router.get("/namespaces/{namespace}/imagestreams/{name}")
def get_stream(
    namespace: str, name: str, service: ImageStreamService = Depends(get_stream_service)
) -> Dict[str, Any]:
    stream = service.get_stream(namespace, name)
    if stream is None:
        raise NotFoundError("ImageStream", f"{namespace}/{name}")
    return encode(stream)


@router.put("/namespaces/{namespace}/imagestreams/{name}/spec")
def update_stream_spec(
    namespace: str,
    name: str,
    spec: ImageStreamSpec,
    resource_version: Optional[int] = Query(None, alias="resourceVersion"),
    service: ImageStreamService = Depends(get_stream_service),
) -> Dict[str, Any]:
    """Replace a stream's spec; pass ``resourceVersion`` to guard against lost updates."""
    return encode(service.update_spec(namespace, name, spec, expected_version=resource_version))


@router.delete(
    "/namespaces/{namespace}/imagestreams/{name}", status_code=status.HTTP_204_NO_CONTENT
)
def delete_stream(
    namespace: str, name: str, service: ImageStreamService = Depends(get_stream_service)
) -> None:
    if not service.delete_stream(namespace, name):
        raise NotFoundError("ImageStream", f"{namespace}/{name}")


@router.post("/namespaces/{namespace}/imagestreammappings", status_code=status.HTTP_201_CREATED)
def create_mapping(
    namespace: str,
    mapping: ImageStreamMapping,
    service: ImageStreamService = Depends(get_stream_service),
) -> Dict[str, Any]:
    """Bind a pushed image to a stream tag."""
    mapping = mapping.model_copy(update={"namespace": namespace})
    return encode(service.apply_mapping(mapping))


@router.get("/namespaces/{namespace}/imagestreams/{name}/tags/{tag}")
def get_stream_tag(
    namespace: str,
    name: str,
    tag: str,
    service: ImageStreamService = Depends(get_stream_service),
) -> Dict[str, Any]:
    return encode(service.get_stream_tag(namespace, name, tag))


@router.get("/namespaces/{namespace}/imagestreams/{name}/tags/{tag}/history")
def get_tag_history(
    namespace: str,
    name: str,
    tag: str,
    service: ImageStreamService = Depends(get_stream_service),
) -> List[Dict[str, Any]]:
    """A tag's events, most recent first."""
    stream = service.get_stream(namespace, name)
    if stream is None:
        raise NotFoundError("ImageStream", f"{namespace}/{name}")
    history = TagEventHistory(stream.status)
    if history.entry(tag) is None:
        raise NotFoundError("ImageStreamTag", f"{name}:{tag}")
    return [e.model_dump(mode="json", by_alias=True) for e in history.events(tag)]


@router.get("/namespaces/{namespace}/imagestreams/{name}/images/{image_id}")
def get_stream_image(
    namespace: str,
    name: str,
    image_id: str,
    service: ImageStreamService = Depends(get_stream_service),
) -> Dict[str, Any]:
    return encode(service.get_stream_image(namespace, name, image_id))


@router.post("/namespaces/{namespace}/imagestreams/{name}/reconcile")
async def reconcile_stream(
    namespace: str,
    name: str,
    request: Request,
    recheck: bool = Query(False),
) -> Dict[str, Any]:
    """Run a reconcile pass now and report the imports it started."""
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Import controller not running")
    requests = await controller.sync(namespace, name, recheck=recheck)
    return {
        "namespace": namespace,
        "name": name,
        "requests": [r.model_dump(mode="json", by_alias=True) for r in requests],
    }


@router.post("/namespaces/{namespace}/imagestreams/{name}/prune")
def prune_stream(
    namespace: str,
    name: str,
    body: Optional[PruneRequest] = None,
    service: ImageStreamService = Depends(get_stream_service),
) -> Dict[str, Any]:
    """Drop status history of tags that are no longer in the spec."""
    stream, removed = service.prune(namespace, name, body.tags if body else None)
    return {"removed": removed, "stream": encode(stream)}
