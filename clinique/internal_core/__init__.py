from .config import AppConfig, load_config
from .session_store import ConsultationStore

__all__ = ["AppConfig", "load_config", "ConsultationStore"]
