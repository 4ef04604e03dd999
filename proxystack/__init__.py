"""Composable asyncio proxy middlewares: merging, static data, shadowing, logging and modifier plugins."""

__version__ = "0.1.0"