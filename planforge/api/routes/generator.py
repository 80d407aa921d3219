"""Package generator routes.

Endpoints:
    POST   /v1/generator/package/{session_id}        Build a package
    DELETE /v1/generator/package/{session_id}/build  Cancel a running build
    POST   /v1/generator/preview/{session_id}        Preview package contents
    GET    /v1/generator/download/{package_id}       Download the zip
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from pydantic import BaseModel

from planforge.api.deps import Services, get_services
from planforge.packaging.engine import PackagePreview

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generator", tags=["generator"])


class PackageResponse(BaseModel):
    """A built package and where to fetch it."""

    package_id: str
    session_id: str
    project_name: str
    download_url: str
    files: list[str]
    size_bytes: int
    expires_at: str
    downloaded_at: Optional[str] = None


@router.post("/package/{session_id}", response_model=PackageResponse)
def build_package(session_id: str, services: Services = Depends(get_services)) -> PackageResponse:
    """Build a zip of every completed output, the agent prompts and a README.

    Only one build per session runs at a time; a concurrent request gets 409.
    """
    record = services.packaging.build_package(session_id)
    return PackageResponse(
        package_id=record.package_id,
        session_id=record.session_id,
        project_name=record.project_name,
        download_url=f"/v1/generator/download/{record.package_id}",
        files=record.files,
        size_bytes=record.size_bytes,
        expires_at=record.expires_at,
    )


@router.delete("/package/{session_id}/build")
def cancel_build(session_id: str, services: Services = Depends(get_services)) -> dict:
    cancelled = services.packaging.cancel_build(session_id)
    return {"session_id": session_id, "cancelled": cancelled}


@router.post("/preview/{session_id}", response_model=PackagePreview)
def preview_package(session_id: str, services: Services = Depends(get_services)) -> PackagePreview:
    return services.packaging.preview_package(session_id)


@router.get("/download/{package_id}")
def download_package(package_id: str, services: Services = Depends(get_services)) -> FileResponse:
    """Stream the archive. It is deleted shortly after the first download."""
    record = services.packaging.open_download(package_id)
    return FileResponse(
        record.archive_path,
        media_type="application/zip",
        filename=f"{record.package_id}.zip",
    )
