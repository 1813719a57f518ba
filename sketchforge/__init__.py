"""
SketchForge - A procedural drawing and geometric transform engine.

This package contains the engine modules:
- core: Geometry kernel and raster surfaces
- editor: Guides, strokes, brushes, transforms, tools and the drawing canvas
- services: Engine services (config, logging)
"""

__version__ = "0.1.0"
