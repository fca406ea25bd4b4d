"""
Chart rendering boundary for the image archive service.

A chart renderer (e.g. a Helm wrapper) turns a chart and its values into a
rendered manifest and finds the image references in it. Rendering itself is
not implemented here; this module only defines what the service needs from a
renderer and turns its output into a fetchable image list.
"""

import logging
from typing import Protocol

from .errors import ChartRenderError, SaveomatError
from .images import normalize_images

logger = logging.getLogger(__name__)


class ChartRenderer(Protocol):
    def render(self, chart_ref: str, version: str, values: dict) -> str:
        """Render a chart with the given values and return the manifest text."""
        ...

    def find_image_references(self, manifest: str) -> list[str]:
        """Return the image references used in a rendered manifest."""
        ...


def chart_images(renderer: ChartRenderer, chart_ref: str, version: str = "", values: dict | None = None) -> list[str]:
    """
    Render a chart and return its normalized image list.

    Args:
        renderer: ChartRenderer implementation
        chart_ref: Chart reference, e.g. "stable/hackmd"
        version: Chart version; empty means latest
        values: Chart values overriding the chart defaults

    Returns:
        Image references in manifest order, cleaned with normalize_images()

    Raises:
        ChartRenderError: if rendering or image extraction fails
    """
    logger.info(f"Rendering chart '{chart_ref}' version '{version or 'latest'}'")
    try:
        manifest = renderer.render(chart_ref, version, values or {})
        references = renderer.find_image_references(manifest)
    except SaveomatError:
        raise
    except Exception as e:
        raise ChartRenderError(f"failed to render chart '{chart_ref}': {e}") from e

    images = normalize_images(references)
    logger.info(f"Chart '{chart_ref}' uses {len(images)} images")
    return images
