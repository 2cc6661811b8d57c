from .filesystem_config_provider import ConnectivityResult, FileSystemConfigProvider

__all__ = ["FileSystemConfigProvider", "ConnectivityResult"]
