"""HTTP API"""

from .server import ApiServer, create_app

__all__ = ['ApiServer', 'create_app']
