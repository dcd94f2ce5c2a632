from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from ..config import Settings
from ..governance.ledger import QuotaLedger
from ..governance.selector import Catalog
from ..governance.throttle import RequestThrottle
from ..utils.state import UserStore
from .case_generator import CaseGenerator
from .catalog import load_catalog
from .generation import GenerationClient
from .payments import PaymentGateway


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""

    settings: Settings
    throttle: RequestThrottle
    ledger: QuotaLedger
    store: UserStore
    generator: GenerationClient
    payments: PaymentGateway
    catalog_loader: Callable[[], Catalog]
    rng: random.Random = field(default_factory=random.Random)

    @property
    def cases(self) -> CaseGenerator:
        return CaseGenerator(
            ledger=self.ledger,
            store=self.store,
            generator=self.generator,
            catalog_loader=self.catalog_loader,
            rng=self.rng,
            history_limit=self.settings.recent_history_limit,
            timeout_seconds=self.settings.generation_timeout_seconds,
        )


def build_services(settings: Settings) -> Services:
    catalog_path = str(settings.catalog_path)
    return Services(
        settings=settings,
        throttle=RequestThrottle.from_settings(settings),
        ledger=QuotaLedger.from_settings(settings),
        store=UserStore(free_ceiling=settings.free_ceiling),
        generator=GenerationClient.from_settings(settings),
        payments=PaymentGateway.from_settings(settings),
        catalog_loader=lambda: load_catalog(catalog_path),
    )
