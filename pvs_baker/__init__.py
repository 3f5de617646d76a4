"""
PVS Baker: offline Potential Visibility Set precomputation.

For every static object in a scene and every cell of a uniform grid over
the scene bounds, the baker decides whether the object can possibly be
seen from anywhere inside the cell and stores the answer as one bit.

The CLI reports the version string below with --version.
"""

__version__ = "0.1.0"
