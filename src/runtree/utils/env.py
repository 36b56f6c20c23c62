"""
Runtime environment descriptor attached to every exported run.
"""

import platform
from functools import lru_cache
from typing import Any, Dict


@lru_cache(maxsize=1)
def get_runtime_environment() -> Dict[str, Any]:
    """
    Describe the interpreter and library producing the trace.

    Returns:
        Mapping with library, runtime and platform details
    """
    from runtree import __version__

    return {
        "library": "runtree",
        "library_version": __version__,
        "runtime": platform.python_implementation().lower(),
        "runtime_version": platform.python_version(),
        "platform": platform.platform(),
    }
