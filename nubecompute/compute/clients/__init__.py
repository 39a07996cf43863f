from .base import RemoteClient, RemoteServer, VmCollection

__all__ = ['RemoteClient', 'RemoteServer', 'VmCollection']
