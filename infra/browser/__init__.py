from .playwright_driver import PlaywrightBrowserDriver

__all__ = [
    "PlaywrightBrowserDriver",
]
