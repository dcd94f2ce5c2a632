from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Dict, List

from pydantic import TypeAdapter, ValidationError

from ..governance.selector import Catalog, CatalogError
from ..logging_config import logger
from ..models.schemas import DiseaseEntry

_catalog_adapter = TypeAdapter(Dict[str, List[DiseaseEntry]])


def parse_catalog(raw: object) -> Catalog:
    try:
        catalog = _catalog_adapter.validate_python(raw)
    except ValidationError as exc:
        raise CatalogError(f"Disease catalog is malformed: {exc.error_count()} invalid entries") from exc
    if not catalog:
        raise CatalogError("Disease catalog is empty")
    return catalog


@lru_cache(maxsize=4)
def load_catalog(path: str) -> Catalog:
    catalog_path = Path(path)
    if not catalog_path.is_file():
        logger.error("catalog.missing", path=path)
        raise CatalogError(f"Disease catalog not found at {path}")
    with catalog_path.open("r", encoding="utf-8") as handle:
        try:
            raw = json.load(handle)
        except json.JSONDecodeError as exc:
            raise CatalogError(f"Disease catalog is not valid JSON: {exc.msg}") from exc
    catalog = parse_catalog(raw)
    logger.info("catalog.loaded", path=path, domains=len(catalog))
    return catalog
