# tests/test_provider.py
import re

import pytest

from conftest import FakeServer
from nubecompute.compute.provider import Provider
from nubecompute.compute.providers import LibvirtProvider
from nubecompute.exceptions import (
    NotSupportedError,
    ProviderNotImplementedError,
    VmNotFound,
)
from nubecompute.models import ComputeResource, Host, Nic


class BoomError(Exception):
    pass


def test_default_client_is_not_implemented(app_context):
    provider = Provider(ComputeResource(name='x', url='http://x'))
    with pytest.raises(ProviderNotImplementedError) as excinfo:
        provider.client()
    assert isinstance(excinfo.value, NotImplementedError)


def test_default_capability_flags(fake_resource):
    assert fake_resource.capabilities() == set()
    assert fake_resource.provided_attributes() == {'uuid': 'identity'}
    assert fake_resource.supports_update() is False
    assert fake_resource.supports_vms_pagination() is False
    assert fake_resource.set_console_password() is False
    assert fake_resource.user_data_supported() is False
    assert fake_resource.image_exists('qualquer') is True
    assert fake_resource.available_images() == []
    assert fake_resource.random_password() is None
    assert fake_resource.display_type is None
    assert fake_resource.templates() is None
    assert fake_resource.template(1) is None
    assert fake_resource.image_param_name() == 'image_id'


def test_editable_network_interfaces_depends_on_networks(fake_resource, mocker):
    assert fake_resource.editable_network_interfaces() is False

    mocker.patch.object(fake_resource.backend, 'available_networks', return_value=['default'])
    assert fake_resource.editable_network_interfaces() is True


@pytest.mark.parametrize('method', [
    'available_zones', 'available_networks', 'available_clusters', 'available_folders',
    'available_flavors', 'available_resource_pools', 'available_security_groups',
    'available_storage_domains', 'available_storage_pods',
])
def test_enumerators_not_supported_by_default(fake_resource, method):
    with pytest.raises(NotSupportedError) as excinfo:
        getattr(fake_resource, method)()
    assert 'Fake' in str(excinfo.value)


def test_console_not_supported(fake_resource):
    with pytest.raises(NotSupportedError, match='Fake console is not supported'):
        fake_resource.console('uuid-1')


def test_console_password_setter_clears_setpw(fake_resource):
    fake_resource.console_password = '1'
    assert fake_resource.attrs == {'setpw': None}


def test_test_connection_and_ping(fake_resource):
    assert fake_resource.test_connection() is True
    assert fake_resource.ping() == {}

    fake_resource.url = ''
    assert fake_resource.test_connection() is False
    assert 'url' in fake_resource.ping()


def test_list_vms_is_lazy_and_restartable(fake_resource, fake_client):
    fake_client.add(FakeServer('a'))
    vms = fake_resource.list_vms()
    assert fake_client.list_calls == 0

    assert [vm.identity for vm in vms] == ['a']
    fake_client.add(FakeServer('b'))
    assert [vm.identity for vm in vms] == ['a', 'b']
    assert fake_client.list_calls == 2


def test_find_vm(fake_resource, fake_client):
    server = fake_client.add(FakeServer('a'))
    assert fake_resource.find_vm('a') is server
    with pytest.raises(VmNotFound):
        fake_resource.find_vm('missing')


def test_find_vm_when_client_returns_none(fake_resource, fake_client, mocker):
    mocker.patch.object(fake_client, 'get_server', return_value=None)
    with pytest.raises(VmNotFound):
        fake_resource.find_vm('a')


def test_start_and_stop_vm(fake_resource, fake_client):
    server = fake_client.add(FakeServer('a'))
    fake_resource.start_vm('a')
    fake_resource.stop_vm('a')
    assert server.calls == ['start', 'stop']

    with pytest.raises(VmNotFound):
        fake_resource.start_vm('missing')
    with pytest.raises(VmNotFound):
        fake_resource.stop_vm('missing')


def test_destroy_vm(fake_resource, fake_client):
    server = fake_client.add(FakeServer('a'))
    assert fake_resource.destroy_vm('a') is True
    assert server.calls == ['destroy']


def test_destroy_missing_vm_is_success(fake_resource):
    assert fake_resource.destroy_vm('missing') is True


def test_destroy_vm_propagates_other_errors(fake_resource, fake_client, mocker):
    mocker.patch.object(fake_client, 'get_server', side_effect=BoomError('rede caiu'))
    with pytest.raises(BoomError):
        fake_resource.destroy_vm('a')


def test_create_vm_merges_generated_name(fake_resource, fake_client):
    fake_resource.create_vm({})

    params = fake_client.created[0]
    assert re.fullmatch(r'foreman_\d+', params['name'])


def test_create_vm_caller_values_win(fake_resource, fake_client):
    fake_resource.create_vm({'name': 'web01', 'cores': 2})
    assert fake_client.created == [{'name': 'web01', 'cores': 2}]


def test_new_vm_requires_valid_resource(fake_resource, mocker):
    new_server = mocker.patch.object(fake_resource.client(), 'new_server', return_value='vm')
    assert fake_resource.new_vm({'name': 'web01'}) == 'vm'
    new_server.assert_called_once_with({'name': 'web01'})

    fake_resource.name = ''
    assert fake_resource.new_vm() is None


def test_save_vm_updates_attributes(fake_resource, fake_client):
    fake_client.add(FakeServer('a', {'cores': 1}))
    fake_resource.save_vm('a', {'cores': 4})
    assert fake_client.servers['a'].attributes['cores'] == 4


def test_vm_compute_attributes_for(fake_resource, fake_client):
    fake_client.add(FakeServer('a', {'name': 'web01', 'cores': 2},
                               volumes=[{'size': 10}, {'size': 20}]))

    assert fake_resource.vm_compute_attributes_for('a') == {
        'name': 'web01',
        'cores': 2,
        'volumes_attributes': {'0': {'size': 10}, '1': {'size': 20}},
    }


def test_vm_compute_attributes_without_volumes(fake_resource, fake_client):
    fake_client.add(FakeServer('a', {'name': 'web01'}))
    assert fake_resource.vm_compute_attributes_for('a') == {'name': 'web01'}


def test_vm_compute_attributes_for_missing_vm(fake_resource, caplog):
    assert fake_resource.vm_compute_attributes_for('missing') == {}
    assert "missing" in caplog.text


def test_vm_compute_attributes_for_propagates_client_errors(fake_resource, fake_client, mocker):
    mocker.patch.object(fake_client, 'get_server', side_effect=BoomError())
    with pytest.raises(BoomError):
        fake_resource.vm_compute_attributes_for('a')


def test_host_compute_attrs_uses_physical_interfaces(fake_resource):
    host = Host(name='web01', provision_method='image', interfaces=[
        Nic(identifier='eth0', ip='10.0.0.5', ip6='fd00::5', compute_attributes={'network': 'lan'}),
        Nic(identifier='eth0.10', ip='10.0.10.5', virtual=True),
        Nic(identifier='eth1', ip='10.0.1.5', compute_attributes={'network': 'dmz'}),
    ])

    attrs = fake_resource.host_compute_attrs(host)

    assert attrs['name'] == 'web01'
    assert attrs['provision_method'] == 'image'
    assert attrs['interfaces_attributes'] == {
        '0': {'network': 'lan', 'ip': '10.0.0.5', 'ip6': 'fd00::5'},
        '1': {'network': 'dmz', 'ip': '10.0.1.5', 'ip6': None},
    }


def test_end_to_end_libvirt_resource(app_context, mocker):
    from conftest import FakeClient

    fake = FakeClient()
    mocker.patch.object(LibvirtProvider, 'is_available', return_value=True)
    mocker.patch.object(LibvirtProvider, 'build_client', return_value=fake)

    resource = ComputeResource(name='vm1', provider='Libvirt', url='http://host/')
    resource.save()
    assert resource.url == 'http://host'
    assert resource.to_label() == 'vm1 (Libvirt)'

    resource.create_vm({})
    assert re.fullmatch(r'foreman_\d+', fake.created[0]['name'])
