"""
FastAPI dependencies of the ingestion gateway
"""

from fastapi import Depends, HTTPException, Request, status

from ingestion_gateway.service import IngestionGateway


def get_gateway(request: Request) -> IngestionGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion gateway is not initialized",
        )
    return gateway


GatewayDep = Depends(get_gateway)
