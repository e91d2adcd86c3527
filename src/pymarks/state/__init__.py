"""State/store layer.

This package is the single source of truth for how the snapshot load and
live change feed events are merged into the ordered bookmark collection of
the signed-in user.
"""
