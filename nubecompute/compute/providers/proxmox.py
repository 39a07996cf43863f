import logging
import re
import time
from urllib.parse import urlparse

import urllib3
from flask import current_app, has_app_context
from proxmoxer import ProxmoxAPI, ResourceException

from nubecompute.compute.clients import RemoteClient, RemoteServer
from nubecompute.compute.provider import Provider
from nubecompute.exceptions import VmNotFound

# Silencia avisos de certificado auto-assinado (comum em Proxmox)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

DISK_KEY_RE = re.compile(r'^(scsi|virtio|sata|ide)\d+$')


class ProxmoxTaskFailedError(Exception):
    """Exceção levantada quando uma tarefa do Proxmox retorna um status de falha."""
    pass


def _is_missing_vm(error):
    # O PVE responde 500 "Configuration file ... does not exist" para vmid inexistente
    return error.status_code == 404 or 'does not exist' in str(error)


def _by_index(item):
    return int(item[0])


class ProxmoxVolume:
    def __init__(self, key, spec):
        self.attributes = {'id': key}
        storage, _, options = spec.partition(',')
        self.attributes['volume'] = storage
        self.attributes['storage'] = storage.split(':', 1)[0]
        for option in filter(None, options.split(',')):
            name, _, value = option.partition('=')
            self.attributes[name] = value


class ProxmoxServer(RemoteServer):
    """VM QEMU de um node Proxmox."""

    def __init__(self, client, node_id, vmid, summary=None):
        self._client = client
        self.node_id = node_id
        self.vmid = int(vmid)
        self.summary = summary or {}
        self._config = None

    @property
    def endpoint(self):
        return self._client.connection.nodes(self.node_id).qemu(self.vmid)

    @property
    def config(self):
        if self._config is None:
            self._config = self.endpoint.config.get()
        return self._config

    @property
    def identity(self):
        return str(self.vmid)

    @property
    def attributes(self):
        attrs = dict(self.config)
        attrs['id'] = self.identity
        attrs['node'] = self.node_id
        if 'status' in self.summary:
            attrs['status'] = self.summary['status']
        return attrs

    @property
    def volumes(self):
        return [
            ProxmoxVolume(key, value) for key, value in sorted(self.config.items())
            if DISK_KEY_RE.match(key) and 'media=cdrom' not in str(value)
        ]

    def start(self):
        upid = self.endpoint.status.start.post()
        self._client.wait_for_task(upid, self.node_id)
        return True

    def stop(self):
        upid = self.endpoint.status.stop.post()
        self._client.wait_for_task(upid, self.node_id)
        return True

    def destroy(self):
        upid = self.endpoint.delete()
        self._client.wait_for_task(upid, self.node_id)
        return True

    def update(self, attrs):
        params = {k: v for k, v in attrs.items() if k not in ('id', 'node', 'status', 'vmid')}
        if params:
            res = self.endpoint.config.put(**params)
            if isinstance(res, str) and res.startswith('UPID:'):
                self._client.wait_for_task(res, self.node_id)
        self._config = None
        return True


class ProxmoxClient(RemoteClient):
    """
    Adapter do proxmoxer para a superfície RemoteClient.
    Opera VMs QEMU de um node (configurado ou o primeiro online).
    """

    def __init__(self, connection, node_id=None, task_timeout=300, poll_interval=2):
        self.connection = connection
        self._default_node = node_id
        self._cached_first_node_id = None
        self.task_timeout = task_timeout
        self.poll_interval = poll_interval
        self.logger = logging.getLogger(__name__)

    def resolve_node_id(self, node_id=None):
        if node_id: return node_id
        if self._default_node: return self._default_node
        if self._cached_first_node_id: return self._cached_first_node_id

        nodes = self.connection.nodes.get()
        for node in nodes:
            if node.get('status') == 'online':
                self._cached_first_node_id = node['node']
                return self._cached_first_node_id
        raise ResourceException(503, "Service Unavailable", "Nenhum nó online encontrado no cluster.")

    def wait_for_task(self, task_upid, node_id):
        """Bloqueia até a tarefa do Proxmox terminar."""
        if not task_upid or not isinstance(task_upid, str) or not task_upid.startswith('UPID:'):
            return  # Tarefa síncrona

        start_time = time.time()
        self.logger.info(f"Iniciando polling da tarefa UPID: {task_upid}")

        while (time.time() - start_time) < self.task_timeout:
            task_status = self.connection.nodes(node_id).tasks(task_upid).status.get()

            if task_status.get('status') == 'stopped':
                if task_status.get('exitstatus') == 'OK':
                    self.logger.info(f"Tarefa UPID: {task_upid} concluída com sucesso.")
                    return
                error_message = task_status.get('exitstatus', 'Falha desconhecida na tarefa PVE.')
                raise ProxmoxTaskFailedError(f"A operação do Proxmox falhou: {error_message}")

            time.sleep(self.poll_interval)

        raise TimeoutError(f"A tarefa do Proxmox excedeu o tempo limite de {self.task_timeout} segundos.")

    def list_servers(self, **filters):
        node_id = self.resolve_node_id(filters.get('node'))
        vms = self.connection.nodes(node_id).qemu.get()
        return [
            ProxmoxServer(self, node_id, vm['vmid'], vm)
            for vm in sorted(vms, key=lambda vm: int(vm['vmid']))
            if not vm.get('template')
        ]

    def locate_vm_node(self, uuid):
        """Node onde a VM está hoje, via cluster resources. None se não aparecer."""
        resources = self.connection.cluster.resources.get(type='vm')
        return next(
            (res.get('node') for res in resources
             if res.get('type', 'qemu') == 'qemu' and str(res.get('vmid')) == str(uuid)),
            None,
        )

    def get_server(self, uuid):
        node_id = self.locate_vm_node(uuid) or self.resolve_node_id()
        try:
            summary = self.connection.nodes(node_id).qemu(uuid).status.current.get()
        except ResourceException as e:
            if _is_missing_vm(e):
                raise VmNotFound("VM %s não encontrada no node %s", uuid, node_id) from e
            raise
        return ProxmoxServer(self, node_id, uuid, summary)

    def create_server(self, params):
        node_id = self.resolve_node_id(params.get('node'))
        vmid = params.get('vmid') or int(self.connection.cluster.nextid.get())

        create_config = {
            'vmid': vmid,
            'name': params['name'],
            'cores': params.get('cores', 1),
            'memory': params.get('memory', 1024),
            'pool': params.get('pool'),
        }
        for index, nic in sorted((params.get('interfaces_attributes') or {}).items(), key=_by_index):
            create_config[f'net{index}'] = self.format_interface(nic)
        for index, volume in sorted((params.get('volumes_attributes') or {}).items(), key=_by_index):
            create_config[f'scsi{index}'] = f"{volume.get('storage', 'local-lvm')}:{volume.get('size', 8)}"
        # Remove chaves nulas
        create_config = {k: v for k, v in create_config.items() if v is not None}

        upid = self.connection.nodes(node_id).qemu.create(**create_config)
        self.wait_for_task(upid, node_id)
        return ProxmoxServer(self, node_id, vmid)

    def list_interfaces(self):
        node_id = self.resolve_node_id()
        return self.connection.nodes(node_id).network.get(type='any_bridge')

    def format_interface(self, params):
        spec = f"{params.get('model', 'virtio')},bridge={params.get('bridge', 'vmbr0')}"
        if params.get('tag'):
            spec += f",tag={params['tag']}"
        return spec

    def create_interface(self, params):
        return self.format_interface(params)


class ProxmoxProvider(Provider):
    """
    Cluster Proxmox VE via API (proxmoxer).

    url: https://pve.local:8006
    user: root@pam
    password: senha ou, com attrs['token_name'], o valor do API Token
    attrs: node (opcional), token_name (opcional)
    """
    name = 'Proxmox'

    def build_client(self):
        config = current_app.config if has_app_context() else {}
        attrs = self.resource.attrs or {}
        parsed = urlparse(self.resource.url if '//' in self.resource.url else f"https://{self.resource.url}")

        connect_kwargs = {
            'host': parsed.hostname,
            'port': parsed.port or 8006,
            'user': self.resource.user,
            'verify_ssl': config.get('PROXMOX_VERIFY_SSL', False),
            'timeout': 30,
        }
        if attrs.get('token_name'):
            connect_kwargs['token_name'] = attrs['token_name']
            connect_kwargs['token_value'] = self.resource.password
        else:
            connect_kwargs['password'] = self.resource.password

        connection = ProxmoxAPI(**connect_kwargs)
        self.logger.info(f"Conectado ao Proxmox: {parsed.hostname} ({self.resource.user})")
        return ProxmoxClient(
            connection,
            node_id=attrs.get('node'),
            task_timeout=config.get('PROXMOX_TASK_TIMEOUT', 300),
            poll_interval=config.get('PROXMOX_TASK_POLL_INTERVAL', 2),
        )

    def test_connection(self, **options):
        if not super().test_connection(**options):
            return False
        try:
            self.client().connection.version.get()
        except Exception as e:
            return self._connection_error(e)
        return True

    def capabilities(self):
        return {'build', 'image', 'new_volume'}

    def supports_update(self):
        return True

    def vm_instance_defaults(self):
        return dict(super().vm_instance_defaults(), cores=1, memory=1024)

    def available_clusters(self):
        return [node['node'] for node in self.client().connection.nodes.get()]

    def available_networks(self):
        return [iface['iface'] for iface in self.client().list_interfaces()]

    def available_storage_domains(self, storage_domain=None):
        client = self.client()
        node_id = client.resolve_node_id()
        storages = client.connection.nodes(node_id).storage.get(content='images')
        return [s['storage'] for s in storages if not storage_domain or s['storage'] == storage_domain]

    def available_resource_pools(self):
        return [pool['poolid'] for pool in self.client().connection.pools.get()]

    def available_images(self):
        client = self.client()
        node_id = client.resolve_node_id()
        return [
            {'uuid': str(vm['vmid']), 'name': vm.get('name')}
            for vm in client.connection.nodes(node_id).qemu.get()
            if vm.get('template')
        ]
