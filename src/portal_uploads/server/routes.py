"""
API routes for the Portal Uploads server.

Exposes the submission session's upload registry over REST.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status

from ..core.exceptions import (
    PortalUploadError,
    TaskNotFoundError,
    UploadStateError,
    ValidationError,
)
from ..core.models import (
    DeleteResponse,
    RegistryView,
    RenameRequest,
    SubmissionResponse,
    TaskView,
)
from .session import UploadSession

router = APIRouter(
    prefix="",
    tags=["Uploads"],
    responses={
        404: {"description": "Upload not found"},
        409: {"description": "Operation not allowed in the current state"},
        422: {"description": "Validation error"},
    },
)


def get_session(request: Request) -> UploadSession:
    """Return the submission session created by the app lifespan."""
    return request.app.state.session


def to_http_error(e: PortalUploadError) -> HTTPException:
    if isinstance(e, TaskNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, UploadStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    if isinstance(e, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post(
    "/uploads",
    response_model=TaskView,
    status_code=status.HTTP_201_CREATED,
    summary="Register upload",
    description="Register a large file and start uploading it to the portal in the background.",
)
async def create_upload(
    file: UploadFile = File(..., description="File to upload"),
    display_name: str = Form("", description="Label shown with the attachment"),
    session: UploadSession = Depends(get_session),
) -> TaskView:
    """Spool and register a large file."""
    try:
        task_id = session.add_upload(file.file, file.filename or "", display_name)
    except PortalUploadError as e:
        raise to_http_error(e)
    finally:
        await file.close()

    if task_id is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="File is below the large-file threshold; attach it inline with the submission",
        )
    return session.registry.get(task_id).to_view()


@router.get(
    "/uploads",
    response_model=RegistryView,
    summary="List uploads",
    description="List every upload of the session and whether the submission can be sent.",
)
async def list_uploads(session: UploadSession = Depends(get_session)) -> RegistryView:
    registry = session.registry
    tasks = registry.tasks()
    return RegistryView(
        tasks=[task.to_view() for task in tasks],
        total_count=len(tasks),
        submittable=registry.is_submittable(),
    )


@router.get(
    "/uploads/{task_id}",
    response_model=TaskView,
    summary="Get upload",
)
async def get_upload(task_id: str, session: UploadSession = Depends(get_session)) -> TaskView:
    try:
        return session.registry.get(task_id).to_view()
    except PortalUploadError as e:
        raise to_http_error(e)


@router.patch(
    "/uploads/{task_id}",
    response_model=TaskView,
    summary="Rename upload",
)
async def rename_upload(
    task_id: str,
    request: RenameRequest,
    session: UploadSession = Depends(get_session),
) -> TaskView:
    try:
        return session.registry.rename(task_id, request.display_name).to_view()
    except PortalUploadError as e:
        raise to_http_error(e)


@router.delete(
    "/uploads/{task_id}",
    response_model=DeleteResponse,
    summary="Remove upload",
    description="Remove an upload, cancelling its transfer if it is still running.",
)
async def delete_upload(
    task_id: str, session: UploadSession = Depends(get_session)
) -> DeleteResponse:
    try:
        task = session.remove(task_id)
    except PortalUploadError as e:
        raise to_http_error(e)
    return DeleteResponse(success=True, message=f"Upload {task.source.name} removed")


@router.post(
    "/uploads/{task_id}/retry",
    response_model=TaskView,
    status_code=status.HTTP_201_CREATED,
    summary="Retry upload",
    description="Start a fresh upload of a failed or cancelled file.",
)
async def retry_upload(task_id: str, session: UploadSession = Depends(get_session)) -> TaskView:
    try:
        new_id = session.retry(task_id)
    except PortalUploadError as e:
        raise to_http_error(e)
    if new_id is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="File is below the large-file threshold",
        )
    return session.registry.get(new_id).to_view()


@router.get(
    "/submission",
    response_model=SubmissionResponse,
    summary="Collect attachments",
    description="Return the finished attachments; fails with 409 while uploads are running.",
)
async def get_submission(session: UploadSession = Depends(get_session)) -> SubmissionResponse:
    registry = session.registry
    try:
        files = registry.submission_files()
    except PortalUploadError as e:
        raise to_http_error(e)
    return SubmissionResponse(
        assignment_id=registry.context.assignment_id,
        files=files,
        unverified_count=sum(1 for f in files if not f.verified),
    )
