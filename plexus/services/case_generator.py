"""Quota-gated case generation: admission, disease choice, generation, then commit."""
from __future__ import annotations

import asyncio
import random
import time
from typing import Any, Callable, Dict

from ..governance.ledger import QuotaLedger
from ..governance.selector import RECENT_HISTORY_LIMIT, Catalog, pick
from ..logging_config import logger
from ..models.schemas import Decision, GeneratedCase, GenerateCaseRequest, Selection
from ..utils.state import UserStore, UserStoreError
from .generation import GenerationClient, GenerationError
from .prompts import case_generation_prompt, simulated_case


class QuotaExceeded(Exception):
    def __init__(self, decision: Decision) -> None:
        super().__init__("Case generation quota exhausted")
        self.decision = decision


def stamp_case(payload: Dict[str, Any], selection: Selection, now: float | None = None) -> Dict[str, Any]:
    case = dict(payload)
    if case.get("underlyingDiagnosis") != selection.disease_name:
        case["underlyingDiagnosis"] = selection.disease_name
        case["rarity"] = selection.disease_rarity.value
    case.setdefault("rarity", selection.disease_rarity.value)
    moment = now if now is not None else time.time()
    case.update(id=f"gen-{int(moment * 1000)}", specialty=selection.domain, status="active")
    return case


class CaseGenerator:
    def __init__(
        self,
        *,
        ledger: QuotaLedger,
        store: UserStore,
        generator: GenerationClient,
        catalog_loader: Callable[[], Catalog],
        rng: random.Random | None = None,
        history_limit: int = RECENT_HISTORY_LIMIT,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.generator = generator
        self.catalog_loader = catalog_loader
        self.rng = rng or random.Random()
        self.history_limit = history_limit
        self.timeout_seconds = timeout_seconds

    async def generate(self, user_id: str, request: GenerateCaseRequest) -> GeneratedCase:
        # One generation per user at a time so two requests cannot both spend the last slot.
        async with self.store.user_lock(user_id):
            try:
                user = await self.store.load(user_id)
            except UserStoreError as exc:
                logger.error("quota.read_failed", user_id=user_id, reason=str(exc))
                user = None
            decision = self.ledger.can_generate(user)
            if not decision.allowed or user is None:
                logger.info("quota.denied", user_id=user_id, remaining=decision.remaining)
                raise QuotaExceeded(decision)

            catalog = self.catalog_loader()
            history = list(request.recent_diagnoses)[-self.history_limit:]
            selection = pick(request.specialty, request.rarity, history, catalog, self.rng, self.history_limit)
            logger.info(
                "generation.start",
                user_id=user_id,
                domain=selection.domain,
                rarity=selection.disease_rarity.value,
            )

            try:
                payload = await asyncio.wait_for(
                    self.generator.generate_json(case_generation_prompt(selection), simulated=simulated_case(selection)),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError as exc:
                logger.warning("generation.timeout", user_id=user_id, timeout=self.timeout_seconds)
                raise GenerationError("Case generation timed out") from exc
            if not isinstance(payload, dict):
                raise GenerationError("Invalid AI response: expected JSON object")

            case = stamp_case(payload, selection)
            self.ledger.commit(user)
            await self.store.save(user)
            return GeneratedCase(
                case=case,
                selection=selection,
                recent_diagnoses=history,
                quota=self.ledger.can_generate(user),
            )
