"""
Extension points: named slots where a deployment can substitute its own
implementation of a validation rule for the built-in one.
"""

import importlib
import logging
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

ADJUSTMENT_REASON_POINT_ID = "AdjustmentReasonValidator"
FREE_TEXT_POINT_ID = "FreeTextValidator"
UNPACK_KIT_POINT_ID = "UnpackKitValidator"


class ExtensionRegistry:
    """Maps an extension point id to the implementation currently registered."""

    def __init__(self, extensions: Optional[Dict[str, Any]] = None):
        self._extensions: Dict[str, Any] = dict(extensions or {})

    def register(self, point_id: str, implementation: Any) -> None:
        logger.info(f"Registering {type(implementation).__name__} for extension point {point_id}")
        self._extensions[point_id] = implementation

    def unregister(self, point_id: str) -> None:
        self._extensions.pop(point_id, None)

    def get_extension(self, point_id: str, default: Any) -> Any:
        """Return the registered implementation, or ``default`` when there is none."""
        return self._extensions.get(point_id, default)

    @classmethod
    def from_config(cls, mapping: Mapping[str, str]) -> "ExtensionRegistry":
        """
        Build a registry from ``{point_id: "package.module:ClassName"}``.

        Each class is instantiated without arguments.
        """
        registry = cls()
        for point_id, path in mapping.items():
            module_name, _, class_name = path.partition(":")
            if not class_name:
                raise ValueError(f"Extension {point_id} must be given as 'module:ClassName', got {path!r}")
            implementation_class = getattr(importlib.import_module(module_name), class_name)
            registry.register(point_id, implementation_class())
        return registry
