# local imports
from .autentique_client import AutentiqueClient

__all__ = ["AutentiqueClient"]
