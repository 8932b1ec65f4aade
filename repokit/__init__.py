from repokit.depends import Inject, depends

__version__ = "0.1.0"

__all__ = ["Inject", "__version__", "depends"]
