from __future__ import annotations

import pytest

from plexus.config import DEFAULT_CATALOG_PATH
from plexus.governance.selector import CatalogError
from plexus.models.schemas import Rarity
from plexus.services.catalog import load_catalog, parse_catalog


def test_bundled_catalog_covers_every_rarity():
    catalog = load_catalog(str(DEFAULT_CATALOG_PATH))
    assert 'Cardiology' in catalog
    for diseases in catalog.values():
        assert {entry.rarity for entry in diseases} == set(Rarity)


def test_parse_rejects_empty_catalog():
    with pytest.raises(CatalogError):
        parse_catalog({})


def test_parse_rejects_unknown_rarity():
    with pytest.raises(CatalogError):
        parse_catalog({'Cardiology': [{'name': 'Pericarditis', 'rarity': 'Legendary'}]})


def test_missing_file_is_a_catalog_error(tmp_path):
    with pytest.raises(CatalogError):
        load_catalog(str(tmp_path / 'absent.json'))


def test_invalid_json_is_a_catalog_error(tmp_path):
    path = tmp_path / 'broken.json'
    path.write_text('{"Cardiology": [', encoding='utf-8')
    with pytest.raises(CatalogError):
        load_catalog(str(path))


def test_health_degrades_when_catalog_unavailable(client, services):
    def unavailable():
        raise CatalogError('missing')

    services.catalog_loader = unavailable
    body = client.get('/api/v1/health').json()
    assert body['status'] == 'degraded'
    assert body['components']['catalog'] == 'unavailable'
