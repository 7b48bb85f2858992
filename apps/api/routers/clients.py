"""Dependencies exposing the process-lifetime clients built in the app lifespan."""

from fastapi import Request

from generation.client import GenerationGateway
from services.asm_portal import AsmPortalClient
from services.billing import StripeBilling


def get_asm_portal(request: Request) -> AsmPortalClient:
    return request.app.state.asm_portal


def get_generation_gateway(request: Request) -> GenerationGateway:
    return request.app.state.generation_gateway


def get_billing(request: Request) -> StripeBilling:
    return request.app.state.billing
