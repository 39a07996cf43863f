import logging
import secrets
import time

from flask import current_app, has_app_context

from nubecompute.compute.clients import VmCollection
from nubecompute.compute.reconcile import (
    attrs_differ,
    host_interfaces_attrs,
    indexed,
    parse_nested_params,
    stringify_keys,
)
from nubecompute.exceptions import (
    NotSupportedError,
    ProviderNotImplementedError,
    VmNotFound,
)


class Provider:
    """
    Contrato uniforme de ciclo de vida de VMs.

    Cada backend (Libvirt, EC2, Proxmox, plugins...) é uma subclasse que
    sobrescreve apenas o que suporta. O comportamento padrão aqui é o de
    "não suportado" ou "não implementado", e as flags de capacidade são
    conservadoras.

    Uma instância é vinculada a um único ComputeResource (self.resource),
    de onde vêm url, usuário, senha e attrs.
    """

    # Nome no registro (ex: 'Libvirt'). Plugins devem preencher.
    name = None
    # Nome exibido em to_label(); por padrão o próprio nome
    friendly_name = None

    def __init__(self, resource):
        self.resource = resource
        self._client = None
        self.logger = logging.getLogger(__name__)

    @classmethod
    def is_available(cls):
        """
        Providers com dependências opcionais sobrescrevem para verificar se
        estão instaladas. Plugins não precisam, suas dependências sempre existem.
        """
        return True

    @classmethod
    def provider_friendly_name(cls):
        if cls.friendly_name:
            return cls.friendly_name
        if cls.name:
            return cls.name
        return cls.__name__.replace('Provider', '') or cls.__name__

    # --- Conexão ---

    def client(self):
        """Handle autenticado do backend, criado uma vez por instância."""
        if self._client is None:
            self._client = self.build_client()
        return self._client

    def build_client(self):
        raise ProviderNotImplementedError("Not implemented for %s", self.provider_friendly_name())

    def test_connection(self, **options):
        """Roda a validação do resource; erros ficam em resource.errors."""
        return self.resource.validate()

    def _connection_error(self, error):
        self.resource.errors.setdefault('base', []).append(str(error))
        return False

    # --- Capacidades ---

    def capabilities(self):
        return set()

    def provided_attributes(self):
        """Atributos que o provider consegue devolver ao Host."""
        return {'uuid': 'identity'}

    def supports_update(self):
        return False

    def supports_vms_pagination(self):
        return False

    def editable_network_interfaces(self):
        try:
            return bool(self.available_networks())
        except NotSupportedError:
            return False

    def set_console_password(self):
        return False

    def apply_console_password(self, setpw):
        self.resource.attrs['setpw'] = None

    def user_data_supported(self):
        return False

    def image_exists(self, image):
        return True

    def image_param_name(self):
        return 'image_id'

    def interfaces_attrs_name(self):
        return 'interfaces'

    @property
    def display_type(self):
        return None

    @display_type.setter
    def display_type(self, value):
        pass

    # --- VMs ---

    def vm_instance_defaults(self):
        prefix = 'foreman'
        if has_app_context():
            prefix = current_app.config.get('VM_NAME_PREFIX', prefix)
        return {'name': f"{prefix}_{int(time.time())}"}

    def list_vms(self, **opts):
        return VmCollection(self.client(), **opts)

    def find_vm(self, uuid):
        vm = self.client().get_server(uuid)
        if vm is None:
            raise VmNotFound("VM '%s' não encontrada em %s", uuid, self.resource)
        return vm

    def new_vm(self, attrs=None):
        if not self.test_connection():
            return None
        params = dict(self.vm_instance_defaults(), **stringify_keys(attrs or {}))
        return self.client().new_server(params)

    def create_vm(self, args=None):
        options = dict(self.vm_instance_defaults(), **stringify_keys(args or {}))
        self.logger.debug(f"Criando VM com as opções: {options!r}")
        return self.client().create_server(options)

    def save_vm(self, uuid, attrs):
        vm = self.find_vm(uuid)
        return vm.update(stringify_keys(attrs))

    def start_vm(self, uuid):
        return self.find_vm(uuid).start()

    def stop_vm(self, uuid):
        return self.find_vm(uuid).stop()

    def destroy_vm(self, uuid):
        try:
            return self.find_vm(uuid).destroy()
        except VmNotFound:
            # VM já não existe: nada a fazer
            return True

    def console(self, uuid=None):
        raise NotSupportedError("%s console is not supported at this time", self.provider_friendly_name())

    def new_interface(self, attrs=None):
        return self.client().create_interface(attrs or {})

    def templates(self, **opts):
        return None

    def template(self, template_id, **opts):
        return None

    def random_password(self):
        if not self.set_console_password():
            return None
        return secrets.token_hex(8)

    # --- Inventário do backend ---

    def _not_implemented(self):
        return NotSupportedError("Not implemented for %s", self.provider_friendly_name())

    def available_zones(self):
        raise self._not_implemented()

    def available_images(self):
        return []

    def available_networks(self):
        raise self._not_implemented()

    def available_clusters(self):
        raise self._not_implemented()

    def available_folders(self):
        raise self._not_implemented()

    def available_flavors(self):
        raise self._not_implemented()

    def available_resource_pools(self):
        raise self._not_implemented()

    def available_security_groups(self):
        raise self._not_implemented()

    def available_storage_domains(self, storage_domain=None):
        raise self._not_implemented()

    def available_storage_pods(self, storage_pod=None):
        raise self._not_implemented()

    # --- Reconciliação ---

    def host_compute_attrs(self, host):
        return {
            'name': host.vm_name,
            'provision_method': host.provision_method,
            f"{self.interfaces_attrs_name()}_attributes": host_interfaces_attrs(host),
        }

    def vm_compute_attributes_for(self, uuid):
        try:
            vm = self.find_vm(uuid)
        except VmNotFound:
            self.logger.warning(f"VM com UUID '{uuid}' não encontrada em {self.resource}")
            return {}

        vm_attrs = {k: v for k, v in (vm.attributes or {}).items() if k != 'id'}
        if hasattr(vm, 'volumes'):
            volumes = vm.volumes or []
            vm_attrs['volumes_attributes'] = indexed([volume.attributes for volume in volumes])
        return vm_attrs

    def update_required(self, old_attrs, new_attrs):
        return attrs_differ(old_attrs, new_attrs)

    def nested_attributes_for(self, kind, opts):
        return parse_nested_params(kind, opts)
