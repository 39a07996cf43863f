from .provider import Provider
from .registry import ProviderRegistry

__all__ = ['Provider', 'ProviderRegistry']
