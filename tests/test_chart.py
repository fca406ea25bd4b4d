"""Tests for the chart rendering boundary."""

import pytest

import saveomat
from saveomat.chart import ChartRenderer, chart_images
from saveomat.errors import ChartRenderError

MANIFEST = """\
apiVersion: apps/v1
kind: Deployment
spec:
  template:
    spec:
      containers:
        - image: hackmdio/hackmd:1.0.1-ce-alpine
        - image: postgres:9.6.2
"""


class StaticRenderer:
    def __init__(self, references):
        self.references = references
        self.calls = []

    def render(self, chart_ref, version, values):
        self.calls.append((chart_ref, version, values))
        return MANIFEST

    def find_image_references(self, manifest):
        assert manifest == MANIFEST
        return self.references


def test_chart_images_normalizes_references():
    renderer = StaticRenderer([" hackmdio/hackmd:1.0.1-ce-alpine", "", "postgres:9.6.2 "])

    images = chart_images(renderer, "stable/hackmd", "2.0.0", {"postgresql": {"install": True}})

    assert images == ["hackmdio/hackmd:1.0.1-ce-alpine", "postgres:9.6.2"]
    assert renderer.calls == [("stable/hackmd", "2.0.0", {"postgresql": {"install": True}})]


def test_chart_images_defaults():
    renderer = StaticRenderer([])

    assert chart_images(renderer, "stable/hackmd") == []
    assert renderer.calls == [("stable/hackmd", "", {})]


def test_render_failure_is_wrapped():
    class FailingRenderer(StaticRenderer):
        def render(self, chart_ref, version, values):
            raise RuntimeError("chart signature verification failed")

    with pytest.raises(ChartRenderError, match="verification failed") as excinfo:
        chart_images(FailingRenderer([]), "stable/hackmd")
    assert excinfo.value.stage == "chart"


def test_chart_boundary_is_exported_from_package():
    assert saveomat.chart_images is chart_images
    assert saveomat.ChartRenderer is ChartRenderer
