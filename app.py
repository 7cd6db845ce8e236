"""AI request gateway API using FastAPI + Mangum for AWS Lambda."""

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from mangum import Mangum

from ai_gateway.errors import GatewayError, InvalidRequestError
from ai_gateway.infra.runtime import (
    ensure_langsmith_configured,
    flush_langsmith_traces,
    resolve_secure_parameter,
)
from ai_gateway.schemas import GenerateRequest, GenerateResponse, ProviderSummary
from ai_gateway.services.gateway_service import AIGateway, build_gateway
from ai_gateway.settings import load_gateway_settings

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

app = FastAPI()
router = APIRouter(prefix="/api")


@lru_cache(maxsize=1)
def get_gateway() -> AIGateway:
    """Composition root: build the shared gateway once per process."""
    settings = load_gateway_settings(resolve_secret=resolve_secure_parameter)
    return build_gateway(settings)


def gateway_dependency() -> AIGateway:
    return get_gateway()


@router.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/providers", response_model=list[ProviderSummary], response_model_by_alias=True)
def list_providers(gateway: AIGateway = Depends(gateway_dependency)) -> list[ProviderSummary]:
    return gateway.provider_summaries()


@router.get("/metrics")
def metrics(gateway: AIGateway = Depends(gateway_dependency)) -> dict:
    return gateway.performance_summary()


@router.post("/generate", response_model=GenerateResponse, response_model_by_alias=True)
def generate(
    request: GenerateRequest, gateway: AIGateway = Depends(gateway_dependency)
) -> GenerateResponse | JSONResponse:
    ensure_langsmith_configured()
    try:
        response = gateway.submit(
            request.to_messages(),
            max_tokens=request.max_tokens,
            operation_name=request.operation_name,
        )
    except InvalidRequestError as e:
        logger.warning("Invalid AI request", extra={"operation_name": request.operation_name})
        raise HTTPException(status_code=400, detail=str(e)) from e
    except GatewayError as e:
        logger.exception("AI gateway call failed")
        return JSONResponse(status_code=502, content={"detail": str(e), **e.diagnostic()})
    finally:
        flush_langsmith_traces()

    return GenerateResponse(
        content=response.content,
        provider=response.metadata.provider,
        response_time_ms=response.metadata.response_time_ms,
        tokens_used=response.metadata.tokens_used,
        tokens_estimated=response.metadata.tokens_estimated,
    )


app.include_router(router)


handler = Mangum(app)
