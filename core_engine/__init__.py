"""Core Engine Package.

Geometry primitives, scene objects (flux volumes, occluder boxes, lights),
the octree/quadtree spatial index, the photometric model and the
cooperatively scheduled flux simulation engine.
"""
