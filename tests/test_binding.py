"""Tests for ParameterBindingTable."""

import pytest

from mcruntime.binding import ParameterBindingTable
from mcruntime.schemas import MediaPayload, ParameterID


@pytest.fixture
def table(ndvi_descriptor):
    return ParameterBindingTable(ndvi_descriptor)


class TestParameterBindingTable:

    def test_starts_empty(self, table):
        assert len(table) == 0
        assert list(table) == []

    def test_only_declared_keys(self, table):
        with pytest.raises(KeyError):
            table.bind("SWIR", MediaPayload.from_bytes(b"x", "image/tiff"))
        with pytest.raises(KeyError):
            table.seed(ParameterID(1), MediaPayload.declaration("image/tiff"))
        assert len(table) == 0

    def test_is_declared(self, table):
        assert table.is_declared("NIR")
        assert table.is_declared(ParameterID("NDVI"))
        assert not table.is_declared("SWIR")

    def test_bind_returns_previous(self, table):
        first = MediaPayload.from_bytes(b"1", "image/tiff")
        second = MediaPayload.from_bytes(b"2", "image/tiff")

        assert table.bind("NIR", first) is None
        assert table.bind("NIR", second) is first
        assert table["NIR"] is second
        assert len(table) == 1

    def test_seed_is_not_bound(self, table):
        table.seed("NDVI", MediaPayload.declaration("image/tiff"))
        assert "NDVI" in table
        assert not table.is_bound("NDVI")

        table.bind("NDVI", MediaPayload.declaration("image/tiff"))
        assert table.is_bound("NDVI")

    def test_get_missing_returns_none(self, table):
        assert table.get("RED") is None
        with pytest.raises(KeyError):
            table["RED"]

    def test_contains_ignores_other_types(self, table):
        assert 1.5 not in table
        assert None not in table

    def test_items_and_iter(self, table):
        nir = MediaPayload.from_bytes(b"1", "image/tiff")
        table.bind("NIR", nir)
        table.seed("NDVI", MediaPayload.declaration("image/tiff"))
        assert set(table) == {ParameterID("NIR"), ParameterID("NDVI")}
        assert dict(table.items())[ParameterID("NIR")] is nir

    def test_close_releases_streams(self, table):
        nir = MediaPayload.from_bytes(b"1", "image/tiff")
        table.bind("NIR", nir)
        table.seed("NDVI", MediaPayload.declaration("image/tiff"))
        table.close()
        assert nir.content.closed
