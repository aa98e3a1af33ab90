"""HTTP forward proxy that injects synthetic failures into live traffic."""

__version__ = "0.1.0"
