"""Tests for telemetry primitives: Span, trace_span, @traced."""

from __future__ import annotations

import time
from collections.abc import Generator

import pytest

from pricerules.infrastructure.catalog import Catalog
from pricerules.services.result import ServiceResult
from pricerules.services.telemetry import (
    Span,
    _current_span,
    disable_telemetry,
    enable_telemetry,
    get_current_span,
    trace_span,
    traced,
)
from pricerules.services.units import UnitService


@pytest.fixture(autouse=True)
def _reset_telemetry_state() -> Generator[None]:
    """Ensure clean telemetry state for every test."""
    yield
    disable_telemetry()
    _current_span.set(None)


class TestSpan:
    def test_duration_before_end_is_zero(self) -> None:
        assert Span(name="test").duration_ms == 0.0

    def test_duration_after_end(self) -> None:
        span = Span(name="test")
        time.sleep(0.005)
        span.end()
        assert span.duration_ms > 0

    def test_to_dict_omits_empty_parts(self) -> None:
        span = Span(name="root")
        span.end()
        d = span.to_dict()
        assert set(d) == {"name", "duration_ms"}

    def test_annotations_and_children(self) -> None:
        root = Span(name="root")
        child = Span(name="child", parent=root)
        root.children.append(child)
        root.annotate("catalog_version", 4)
        child.end()
        root.end()
        d = root.to_dict()
        assert d["annotations"] == {"catalog_version": 4}
        assert d["children"][0]["name"] == "child"


class TestTraceSpan:
    def test_disabled_yields_none(self) -> None:
        with trace_span("x") as span:
            assert span is None

    def test_no_parent_yields_none(self) -> None:
        enable_telemetry()
        with trace_span("x") as span:
            assert span is None


class TestTraced:
    def test_disabled_passthrough(self) -> None:
        @traced
        def op() -> ServiceResult:
            return ServiceResult(ok=True, op="op")

        assert op().meta is None

    def test_enabled_injects_tree(self) -> None:
        enable_telemetry()

        @traced
        def op() -> ServiceResult:
            with trace_span("inner"):
                current = get_current_span()
                assert current is not None
                current.annotate("rows", 3)
            return ServiceResult(ok=True, op="op", meta={"catalog_version": 2})

        result = op()
        assert result.meta["catalog_version"] == 2
        telemetry = result.meta["telemetry"]
        assert telemetry["children"][0]["name"] == "inner"
        assert telemetry["children"][0]["annotations"] == {"rows": 3}

    def test_exception_resets_span(self) -> None:
        enable_telemetry()

        @traced
        def boom() -> ServiceResult:
            raise RuntimeError("x")

        with pytest.raises(RuntimeError):
            boom()
        assert _current_span.get() is None

    def test_service_spans(self, catalog: Catalog) -> None:
        enable_telemetry()
        result = UnitService(catalog).register_unit(7, product_id=70, unit_id=1)
        assert result.meta["telemetry"]["name"] == "UnitService.register_unit"
        assert result.meta["catalog_version"] == 1
