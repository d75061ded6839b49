from .authenticator import LoginAuthenticator
from .launcher import BrowserManager
from .observer import ExportProgressObserver

__all__ = [
    "BrowserManager",
    "ExportProgressObserver",
    "LoginAuthenticator",
]
