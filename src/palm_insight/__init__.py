"""PalmInsight: PKCE sign-in and password-reset service."""

__version__ = "0.1.0"


def main() -> None:
    """Console entry point (``palm-insight``)."""
    from palm_insight.servers.main import main as _main

    _main()


__all__ = ["__version__", "main"]
