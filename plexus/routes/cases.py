from __future__ import annotations

import asyncio
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..logging_config import logger
from ..models.schemas import (
    AssistantReply,
    ChatRequest,
    FeedbackRequest,
    GeneratedCase,
    GenerateCaseRequest,
    GuidanceRequest,
    InvestigationRequest,
    OperationClass,
)
from ..services import prompts
from ..services.container import Services
from ..services.generation import GenerationError
from ..utils.auth import get_services, throttled

router = APIRouter(prefix="/api/v1/cases", tags=["cases"])


async def _assist(services: Services, operation: OperationClass, prompt: str, simulated: Dict[str, Any]) -> AssistantReply:
    timeout = services.settings.generation_timeout_seconds
    try:
        payload = await asyncio.wait_for(services.generator.generate_json(prompt, simulated=simulated), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("generation.timeout", operation=operation.value, timeout=timeout)
        raise GenerationError(f"{operation.value} timed out") from exc
    return AssistantReply(operation=operation, payload=payload)


@router.post("/generate", response_model=GeneratedCase)
async def generate_case(
    payload: GenerateCaseRequest,
    user_id: str = Depends(throttled(OperationClass.GENERATION)),
    services: Services = Depends(get_services),
) -> GeneratedCase:
    return await services.cases.generate(user_id, payload)


@router.post("/chat", response_model=AssistantReply)
async def chat_reply(
    payload: ChatRequest,
    user_id: str = Depends(throttled(OperationClass.CHAT_REPLY)),
    services: Services = Depends(get_services),
) -> AssistantReply:
    prompt = prompts.chat_prompt(payload.diagnosis, payload.patient, payload.chat_history)
    return await _assist(services, OperationClass.CHAT_REPLY, prompt, prompts.simulated_chat_reply())


@router.post("/feedback", response_model=AssistantReply)
async def case_feedback(
    payload: FeedbackRequest,
    user_id: str = Depends(throttled(OperationClass.CASE_FEEDBACK)),
    services: Services = Depends(get_services),
) -> AssistantReply:
    prompt = prompts.feedback_prompt(payload.diagnosis, payload.submitted_diagnosis, payload.reasoning, payload.confidence)
    simulated = prompts.simulated_feedback(payload.diagnosis, payload.submitted_diagnosis)
    return await _assist(services, OperationClass.CASE_FEEDBACK, prompt, simulated)


@router.post("/investigation", response_model=AssistantReply)
async def investigation_report(
    payload: InvestigationRequest,
    user_id: str = Depends(throttled(OperationClass.INVESTIGATION_REPORT)),
    services: Services = Depends(get_services),
) -> AssistantReply:
    prompt = prompts.investigation_prompt(payload.diagnosis, payload.test_name)
    simulated = prompts.simulated_investigation(payload.test_name)
    return await _assist(services, OperationClass.INVESTIGATION_REPORT, prompt, simulated)


@router.post("/guidance", response_model=AssistantReply)
async def guidance(
    payload: GuidanceRequest,
    user_id: str = Depends(throttled(OperationClass.GUIDANCE)),
    services: Services = Depends(get_services),
) -> AssistantReply:
    prompt = prompts.guidance_prompt(payload.diagnosis, payload.question)
    return await _assist(services, OperationClass.GUIDANCE, prompt, prompts.simulated_guidance())
