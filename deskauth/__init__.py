"""deskauth - OAuth login for desktop programs via a one-shot localhost callback."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("deskauth")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "AuthConfig",
    "load_config",
    "DesktopAuth",
    "TokenSource",
    "Token",
    "http_client",
    "print_url",
    "open_browser",
    "FileStore",
    "default_file_store",
]


# Lazy imports keep `import deskauth` cheap for CLI startup
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("AuthConfig", "load_config"):
        from .config import AuthConfig, load_config
        return {"AuthConfig": AuthConfig, "load_config": load_config}[name]
    elif name in __all__:
        from . import oauth
        return getattr(oauth, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
