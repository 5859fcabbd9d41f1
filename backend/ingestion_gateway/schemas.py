"""
Request/response schemas of the ingestion gateway
"""

from typing import Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from bridge_shared.models.commands import CamelModel, UserContext, VendorPayload


class VendorCommandRequest(CamelModel):
    """Body shared by the three mutation endpoints"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    payload: VendorPayload
    user_context: UserContext


class CreateVendorRequest(VendorCommandRequest):
    pass


class UpdateVendorRequest(VendorCommandRequest):
    pass


class DeleteVendorRequest(VendorCommandRequest):
    pass


class CommandAcceptedResponse(CamelModel):
    correlation_id: str
    status: Literal["queued"] = "queued"
    message: str = Field(..., description="Human-readable acknowledgement")
