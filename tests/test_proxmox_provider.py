# tests/test_proxmox_provider.py
import pytest
from proxmoxer import ResourceException

from nubecompute.compute.providers.proxmox import ProxmoxTaskFailedError
from nubecompute.exceptions import VmNotFound
from nubecompute.models import ComputeResource


@pytest.fixture
def pve_resource(app_context, mock_pve_connection):
    resource = ComputeResource(
        name='pve-lab', provider='Proxmox', url='https://pve.local:8006/',
        user='root@pam', password='secret', attrs={'node': 'pve-node'},
    )
    resource.save()
    return resource


def qemu(conn):
    return conn.nodes.return_value.qemu


def test_client_uses_password_auth(pve_resource, mocker):
    api = mocker.patch('nubecompute.compute.providers.proxmox.ProxmoxAPI')
    pve_resource.client()

    api.assert_called_once_with(host='pve.local', port=8006, user='root@pam',
                                verify_ssl=False, timeout=30, password='secret')


def test_client_uses_token_auth(pve_resource, mocker):
    api = mocker.patch('nubecompute.compute.providers.proxmox.ProxmoxAPI')
    pve_resource.attrs['token_name'] = 'nubecompute'
    pve_resource.client()

    kwargs = api.call_args.kwargs
    assert kwargs['token_name'] == 'nubecompute'
    assert kwargs['token_value'] == 'secret'
    assert 'password' not in kwargs


def test_test_connection_collects_backend_errors(pve_resource, mock_pve_connection):
    mock_pve_connection.version.get.side_effect = ResourceException(401, 'Unauthorized', 'ticket inválido')

    assert pve_resource.test_connection() is False
    assert 'Unauthorized' in pve_resource.errors['base'][0]


def test_list_vms_skips_templates(pve_resource, mock_pve_connection):
    qemu(mock_pve_connection).get.return_value = [
        {'vmid': 101, 'name': 'web01', 'status': 'running'},
        {'vmid': 9000, 'name': 'debian-12', 'template': 1},
        {'vmid': 100, 'name': 'db01', 'status': 'stopped'},
    ]

    assert [vm.identity for vm in pve_resource.list_vms()] == ['100', '101']
    mock_pve_connection.nodes.assert_called_with('pve-node')


def test_find_vm_maps_missing_vm(pve_resource, mock_pve_connection):
    qemu(mock_pve_connection).return_value.status.current.get.side_effect = ResourceException(
        500, 'Internal Server Error', "Configuration file 'nodes/pve-node/qemu-server/999.conf' does not exist")

    with pytest.raises(VmNotFound):
        pve_resource.find_vm('999')
    assert pve_resource.destroy_vm('999') is True


def test_find_vm_propagates_other_errors(pve_resource, mock_pve_connection):
    qemu(mock_pve_connection).return_value.status.current.get.side_effect = ResourceException(
        403, 'Forbidden', 'Permission check failed')

    with pytest.raises(ResourceException):
        pve_resource.destroy_vm('101')


def test_create_vm_waits_for_task(pve_resource, mock_pve_connection):
    mock_pve_connection.cluster.nextid.get.return_value = '105'
    qemu(mock_pve_connection).create.return_value = 'UPID:pve-node:create'
    mock_pve_connection.nodes.return_value.tasks.return_value.status.get.return_value = {
        'status': 'stopped', 'exitstatus': 'OK'
    }

    vm = pve_resource.create_vm({
        'name': 'web01',
        'interfaces_attributes': {'0': {'bridge': 'vmbr1', 'tag': 10}},
        'volumes_attributes': {'0': {'storage': 'local-lvm', 'size': 20}},
    })

    assert vm.identity == '105'
    qemu(mock_pve_connection).create.assert_called_once_with(
        vmid=105, name='web01', cores=1, memory=1024,
        net0='virtio,bridge=vmbr1,tag=10', scsi0='local-lvm:20',
    )


def test_start_vm_task_failure(pve_resource, mock_pve_connection):
    qemu(mock_pve_connection).return_value.status.current.get.return_value = {'status': 'stopped'}
    qemu(mock_pve_connection).return_value.status.start.post.return_value = 'UPID:pve-node:start'
    mock_pve_connection.nodes.return_value.tasks.return_value.status.get.return_value = {
        'status': 'stopped', 'exitstatus': 'command failed'
    }

    with pytest.raises(ProxmoxTaskFailedError):
        pve_resource.start_vm('101')


def test_vm_compute_attributes_include_volumes(pve_resource, mock_pve_connection):
    endpoint = qemu(mock_pve_connection).return_value
    endpoint.status.current.get.return_value = {'status': 'running'}
    endpoint.config.get.return_value = {
        'name': 'web01',
        'cores': 2,
        'scsi0': 'local-lvm:vm-101-disk-0,size=20G',
        'ide2': 'local:iso/debian.iso,media=cdrom',
    }

    attrs = pve_resource.vm_compute_attributes_for('101')

    assert 'id' not in attrs
    assert attrs['cores'] == 2
    assert attrs['status'] == 'running'
    assert attrs['volumes_attributes'] == {
        '0': {'id': 'scsi0', 'volume': 'local-lvm:vm-101-disk-0', 'storage': 'local-lvm', 'size': '20G'},
    }


def test_update_required_against_live_vm(pve_resource, mock_pve_connection):
    endpoint = qemu(mock_pve_connection).return_value
    endpoint.status.current.get.return_value = {'status': 'running'}
    endpoint.config.get.return_value = {'name': 'web01', 'cores': 2}

    live = pve_resource.vm_compute_attributes_for('101')
    assert pve_resource.update_required(live, {'cores': 2}) is False
    assert pve_resource.update_required(live, {'cores': 4}) is True


def test_inventory(pve_resource, mock_pve_connection):
    mock_pve_connection.nodes.get.return_value = [{'node': 'pve-node'}, {'node': 'pve-02'}]
    mock_pve_connection.pools.get.return_value = [{'poolid': 'lab'}]
    node = mock_pve_connection.nodes.return_value
    node.network.get.return_value = [{'iface': 'vmbr0'}, {'iface': 'vmbr1'}]
    node.storage.get.return_value = [{'storage': 'local-lvm'}]
    node.qemu.get.return_value = [{'vmid': 9000, 'name': 'debian-12', 'template': 1}]

    assert pve_resource.available_clusters() == ['pve-node', 'pve-02']
    assert pve_resource.available_resource_pools() == ['lab']
    assert pve_resource.available_networks() == ['vmbr0', 'vmbr1']
    assert pve_resource.editable_network_interfaces() is True
    assert pve_resource.available_storage_domains() == ['local-lvm']
    assert pve_resource.available_images() == [{'uuid': '9000', 'name': 'debian-12'}]
    assert pve_resource.supports_update() is True
    assert 'image' in pve_resource.capabilities()


def test_find_vm_on_another_cluster_node(pve_resource, mock_pve_connection):
    mock_pve_connection.cluster.resources.get.return_value = [
        {'vmid': 101, 'node': 'pve-node', 'type': 'qemu'},
        {'vmid': 202, 'node': 'pve-02', 'type': 'qemu'},
        {'vmid': 202, 'node': 'pve-03', 'type': 'lxc'},
    ]
    qemu(mock_pve_connection).return_value.status.current.get.return_value = {'status': 'running'}

    vm = pve_resource.find_vm('202')

    assert vm.identity == '202'
    mock_pve_connection.cluster.resources.get.assert_called_with(type='vm')
    mock_pve_connection.nodes.assert_called_with('pve-02')
