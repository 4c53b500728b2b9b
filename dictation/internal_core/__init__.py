from .config import DictationConfig, ProviderConfig, load_config

__all__ = ["DictationConfig", "ProviderConfig", "load_config"]
