"""
Driver registry.

Each driver module calls ``register()`` at import time.  ``main.py`` then
imports every module in ``drivers/`` via ``pkgutil.iter_modules`` and builds
one driver per configured instance.
"""

from __future__ import annotations

_REGISTRY: dict[str, tuple[type, type]] = {}


def register(name: str, config_cls: type, driver_cls: type) -> None:
    """Register a driver under *name*.

    Args:
        name:       Platform key used in the config file (e.g. ``"botframework"``).
        config_cls: Pydantic model validating one instance's config block.
        driver_cls: ``BaseDriver`` subclass to instantiate.
    """
    _REGISTRY[name] = (config_cls, driver_cls)


def all_drivers() -> dict[str, tuple[type, type]]:
    return dict(_REGISTRY)
