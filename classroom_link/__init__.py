"""classroom-link - Link a student portal account to Google Classroom via OAuth2 + PKCE."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("classroom-link")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "Config",
    "load_config",
    "UserStore",
    "OutputHandler",
    "AuthorizationContext",
    "AuthorizationSession",
]


# Lazy imports keep `classroom-link --help` fast
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Config", "load_config"):
        from .config import Config, load_config
        return {"Config": Config, "load_config": load_config}[name]
    elif name == "UserStore":
        from .store import UserStore
        return UserStore
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    elif name in ("AuthorizationContext", "AuthorizationSession"):
        from .oauth import AuthorizationContext, AuthorizationSession
        return {
            "AuthorizationContext": AuthorizationContext,
            "AuthorizationSession": AuthorizationSession,
        }[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
