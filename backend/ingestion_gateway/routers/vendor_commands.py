"""
Vendor command endpoints

Each endpoint only validates and enqueues; the legacy call happens later in
the command worker and its outcome arrives over the notifier's WebSocket.
"""

from fastapi import APIRouter, status

from bridge_shared.models.commands import VendorOperation
from ingestion_gateway.dependencies import GatewayDep
from ingestion_gateway.schemas import (
    CommandAcceptedResponse,
    CreateVendorRequest,
    DeleteVendorRequest,
    UpdateVendorRequest,
    VendorCommandRequest,
)
from ingestion_gateway.service import IngestionGateway

router = APIRouter(prefix="/vendor-commands", tags=["Vendor Commands"])


async def _accept(gateway: IngestionGateway, operation: VendorOperation,
                  request: VendorCommandRequest) -> CommandAcceptedResponse:
    command = await gateway.submit(operation, request.payload, request.user_context)
    return CommandAcceptedResponse(
        correlation_id=command.correlation_id,
        message=f"Vendor {operation.value.lower()} command accepted for processing",
    )


@router.post(
    "/create",
    response_model=CommandAcceptedResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_vendor(request: CreateVendorRequest, gateway: IngestionGateway = GatewayDep):
    return await _accept(gateway, VendorOperation.CREATE, request)


@router.post(
    "/update",
    response_model=CommandAcceptedResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def update_vendor(request: UpdateVendorRequest, gateway: IngestionGateway = GatewayDep):
    return await _accept(gateway, VendorOperation.UPDATE, request)


@router.post(
    "/delete",
    response_model=CommandAcceptedResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def delete_vendor(request: DeleteVendorRequest, gateway: IngestionGateway = GatewayDep):
    return await _accept(gateway, VendorOperation.DELETE, request)
