"""
Public signing API. The token in the path is the only credential.

Status codes: 400 malformed link, 404 unknown link, 410 expired link or
already signed, 409 task not open for signing.
"""
from fastapi import APIRouter, Depends, Path

from signflow.dependencies import get_signing_protocol
from signflow.models import (
    FieldSubmitRequest,
    PositionView,
    SigningCompleteResponse,
    SigningView,
    TokenValidationResponse,
)
from signflow.services.signing import SigningProtocol

router = APIRouter(
    prefix="/v1/public/sign",
    tags=["signing"],
)

ERROR_RESPONSES = {
    400: {"description": "Malformed signing link"},
    404: {"description": "Signing link not found"},
    409: {"description": "Task not open for signing"},
    410: {"description": "Signing link expired, cancelled or already used"},
}


@router.get("/{token}", response_model=SigningView, responses=ERROR_RESPONSES)
async def get_signing_view(
    token: str = Path(..., description="Recipient signing token"),
    signing: SigningProtocol = Depends(get_signing_protocol),
):
    """Documents and this recipient's fields. The first call marks the recipient as viewed."""
    return await signing.fetch_signing_view(token)


@router.get("/{token}/validate", response_model=TokenValidationResponse)
async def validate_signing_token(
    token: str = Path(..., description="Recipient signing token"),
    signing: SigningProtocol = Depends(get_signing_protocol),
):
    """Always 200; `error_code` tells malformed, unknown and expired links apart."""
    return await signing.validate_token(token)


@router.post("/{token}/fields", response_model=PositionView, responses=ERROR_RESPONSES)
async def submit_field(
    body: FieldSubmitRequest,
    token: str = Path(..., description="Recipient signing token"),
    signing: SigningProtocol = Depends(get_signing_protocol),
):
    return await signing.submit_field_value(token, body.position_id, body.value)


@router.post("/{token}/complete", response_model=SigningCompleteResponse, responses=ERROR_RESPONSES)
async def complete_signing(
    token: str = Path(..., description="Recipient signing token"),
    signing: SigningProtocol = Depends(get_signing_protocol),
):
    """
    Finish signing. Fails with REQUIRED_FIELDS_PENDING while required
    fields are empty, and with 410 when called again after success.
    """
    return await signing.complete_signing_session(token)
