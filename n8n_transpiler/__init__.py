"""n8n_transpiler — n8n workflow graph resolver and expression translator."""
from .core import *  # noqa: F401,F403
from .core import __all__ as _core_all
from .core import parse_workflow as parse

__all__ = ["parse", *_core_all]
