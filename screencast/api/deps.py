from fastapi import Request

from screencast.services.persistence import Persistence
from screencast.services.uploads import UploadService


def get_persistence(request: Request) -> Persistence:
    """The collaborator built at startup; see screencast.main."""
    return request.app.state.persistence


def get_upload_service(request: Request) -> UploadService:
    return request.app.state.uploads


def get_base_url(request: Request) -> str:
    return request.app.state.base_url()
