from .host import Host, Nic
from .image import Image
from .compute_profile import ComputeProfile, ComputeAttribute
from .compute_resource import ComputeResource, sanitize_url

__all__ = [
    'ComputeResource', 'ComputeProfile', 'ComputeAttribute',
    'Host', 'Nic', 'Image', 'sanitize_url',
]
