"""Editor package containing document models and host surfaces."""

from importlib import import_module
from typing import Any

from . import document_model, editor_view, surface

__all__ = ["document_model", "editor_view", "surface"]


def __getattr__(name: str) -> Any:
	if name == "qt_editor":
		module = import_module(f"{__name__}.{name}")
		globals()[name] = module
		return module
	raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
