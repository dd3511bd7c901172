"""Sketchboard: a submission board that pushes new sketches to live viewers."""

__version__ = "0.1.0"
