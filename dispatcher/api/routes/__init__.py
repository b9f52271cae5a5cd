from . import diagnostics, trigger

__all__ = ["diagnostics", "trigger"]
