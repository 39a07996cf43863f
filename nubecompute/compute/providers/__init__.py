from .ec2 import EC2Provider
from .libvirt import LibvirtProvider
from .proxmox import ProxmoxProvider

# Providers compilados no pacote; plugins entram pelo ProviderRegistry
BUILTIN_PROVIDERS = {
    'Libvirt': LibvirtProvider,
    'EC2': EC2Provider,
    'Proxmox': ProxmoxProvider,
}
