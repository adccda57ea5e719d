"""Resolve, update and toggle Minecraft mods from remote catalogs."""

__version__ = "0.1.0"
