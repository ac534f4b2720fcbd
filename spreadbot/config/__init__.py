from .profiles import EngineProfile, apply_overrides, get_profile
from .settings import Settings, load_settings

__all__ = ["EngineProfile", "Settings", "apply_overrides", "get_profile", "load_settings"]
