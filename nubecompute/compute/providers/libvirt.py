import importlib.util
import logging
import xml.etree.ElementTree as ET

from nubecompute.compute.clients import RemoteClient, RemoteServer
from nubecompute.compute.provider import Provider
from nubecompute.exceptions import VmNotFound

# Estados de virDomain.state()
DOMAIN_STATES = {
    0: 'nostate', 1: 'running', 2: 'blocked', 3: 'paused',
    4: 'shutdown', 5: 'shutoff', 6: 'crashed', 7: 'pmsuspended',
}


def _libvirt():
    import libvirt
    return libvirt


class LibvirtVolume:
    def __init__(self, disk):
        source = disk.find('source')
        target = disk.find('target')
        self.attributes = {
            'device': disk.get('device'),
            'path': source.get('file') if source is not None else None,
            'target': target.get('dev') if target is not None else None,
        }


class LibvirtServer(RemoteServer):
    def __init__(self, domain):
        self.domain = domain

    @property
    def identity(self):
        return self.domain.UUIDString()

    @property
    def xml(self):
        return ET.fromstring(self.domain.XMLDesc(0))

    @property
    def attributes(self):
        state, max_mem, _, vcpus, _ = self.domain.info()
        return {
            'id': self.identity,
            'name': self.domain.name(),
            'state': DOMAIN_STATES.get(state, 'unknown'),
            'memory': max_mem * 1024,  # KiB -> bytes
            'cpus': vcpus,
        }

    @property
    def volumes(self):
        return [LibvirtVolume(disk) for disk in self.xml.findall('./devices/disk')
                if disk.get('device') == 'disk']

    def start(self):
        return self.domain.create() == 0

    def stop(self):
        return self.domain.shutdown() == 0

    def destroy(self):
        if self.domain.isActive():
            self.domain.destroy()
        self.domain.undefine()
        return True


class LibvirtClient(RemoteClient):
    def __init__(self, connection):
        self.connection = connection
        self.logger = logging.getLogger(__name__)

    def list_servers(self, **filters):
        return [LibvirtServer(domain) for domain in self.connection.listAllDomains(0)]

    def get_server(self, uuid):
        libvirt = _libvirt()
        try:
            domain = self.connection.lookupByUUIDString(uuid)
        except libvirt.libvirtError as e:
            if e.get_error_code() == libvirt.VIR_ERR_NO_DOMAIN:
                raise VmNotFound("Domínio %s não encontrado", uuid) from e
            raise
        return LibvirtServer(domain)

    def create_server(self, params):
        domain = self.connection.defineXML(self.domain_xml(params))
        if str(params.get('start', '0')) == '1':
            domain.create()
        return LibvirtServer(domain)

    def domain_xml(self, params):
        root = ET.Element('domain', type=params.get('domain_type', 'kvm'))
        ET.SubElement(root, 'name').text = params['name']
        ET.SubElement(root, 'memory', unit='b').text = str(params.get('memory', 1024 ** 3))
        ET.SubElement(root, 'vcpu').text = str(params.get('cpus', 1))
        os_el = ET.SubElement(root, 'os')
        ET.SubElement(os_el, 'type').text = 'hvm'
        ET.SubElement(os_el, 'boot', dev='network' if params.get('provision_method') == 'build' else 'hd')

        devices = ET.SubElement(root, 'devices')
        volumes = params.get('volumes_attributes') or {}
        for index, volume in sorted(volumes.items(), key=lambda item: int(item[0])):
            disk = ET.SubElement(devices, 'disk', type='file', device='disk')
            ET.SubElement(disk, 'driver', name='qemu', type=volume.get('format_type', 'qcow2'))
            ET.SubElement(disk, 'source', file=volume['path'])
            ET.SubElement(disk, 'target', dev=f"vd{chr(ord('a') + int(index))}", bus='virtio')

        nics = params.get('nics_attributes') or {}
        for _, nic in sorted(nics.items(), key=lambda item: int(item[0])):
            devices.append(self.create_interface(nic))

        display = params.get('display') or {}
        ET.SubElement(devices, 'graphics', type=display.get('type', 'vnc'), autoport='yes',
                      listen=display.get('listen', '0.0.0.0'),
                      **({'passwd': display['password']} if display.get('password') else {}))
        return ET.tostring(root, encoding='unicode')

    def list_interfaces(self):
        return [iface.name() for iface in self.connection.listAllInterfaces(0)]

    def create_interface(self, params):
        if params.get('bridge'):
            nic = ET.Element('interface', type='bridge')
            ET.SubElement(nic, 'source', bridge=params['bridge'])
        else:
            nic = ET.Element('interface', type='network')
            ET.SubElement(nic, 'source', network=params.get('network', 'default'))
        ET.SubElement(nic, 'model', type=params.get('model', 'virtio'))
        if params.get('mac'):
            ET.SubElement(nic, 'mac', address=params['mac'])
        return nic


class LibvirtProvider(Provider):
    """Hypervisor libvirt (qemu:///system, qemu+ssh://host/system...)."""
    name = 'Libvirt'

    @classmethod
    def is_available(cls):
        return importlib.util.find_spec('libvirt') is not None

    def build_client(self):
        connection = _libvirt().open(self.resource.url)
        self.logger.info(f"Conectado ao libvirt: {self.resource.url}")
        return LibvirtClient(connection)

    def test_connection(self, **options):
        if not super().test_connection(**options):
            return False
        try:
            self.client().connection.getHostname()
        except Exception as e:
            return self._connection_error(e)
        return True

    def capabilities(self):
        return {'build', 'image'}

    def interfaces_attrs_name(self):
        return 'nics'

    def editable_network_interfaces(self):
        return True

    def vm_instance_defaults(self):
        return dict(super().vm_instance_defaults(), memory=1024 ** 3, cpus=1,
                    display={'type': self.display_type, 'password': self.random_password()})

    def set_console_password(self):
        return int(self.resource.attrs.get('setpw', 1)) == 1

    def apply_console_password(self, setpw):
        self.resource.attrs['setpw'] = 1 if str(setpw) in ('1', 'True', 'true') else 0

    @property
    def display_type(self):
        return self.resource.attrs.get('display', 'vnc')

    @display_type.setter
    def display_type(self, value):
        self.resource.attrs['display'] = str(value).lower()

    def available_networks(self):
        return [network.name() for network in self.client().connection.listAllNetworks(0)]

    def console(self, uuid=None):
        vm = self.find_vm(uuid)
        graphics = vm.xml.find('./devices/graphics')
        if graphics is None:
            return super().console(uuid)
        return {
            'name': vm.domain.name(),
            'type': graphics.get('type'),
            'address': graphics.get('listen'),
            'port': graphics.get('port'),
            'password': graphics.get('passwd'),
        }
