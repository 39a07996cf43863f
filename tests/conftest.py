import pytest
from flask_jwt_extended import create_access_token
from nubecompute import create_app
from nubecompute.config import TestingConfig
from nubecompute.compute.clients import RemoteClient, RemoteServer
from nubecompute.compute.provider import Provider
from nubecompute.exceptions import VmNotFound
from nubecompute.extensions import db, registry


class FakeVolume:
    def __init__(self, attributes):
        self.attributes = attributes


class FakeServer(RemoteServer):
    """VM em memória. Guarda as chamadas em `calls`."""

    def __init__(self, uuid, attributes=None, volumes=None):
        self.uuid = uuid
        self._attributes = dict(attributes or {}, id=uuid)
        self.calls = []
        if volumes is not None:
            self.volumes = [FakeVolume(v) for v in volumes]

    @property
    def identity(self):
        return self.uuid

    @property
    def attributes(self):
        return dict(self._attributes)

    def start(self):
        self.calls.append('start')
        return True

    def stop(self):
        self.calls.append('stop')
        return True

    def destroy(self):
        self.calls.append('destroy')
        return True

    def update(self, attrs):
        self._attributes.update(attrs)
        return True


class FakeClient(RemoteClient):
    def __init__(self):
        self.servers = {}
        self.created = []
        self.list_calls = 0

    def add(self, server):
        self.servers[server.uuid] = server
        return server

    def list_servers(self, **filters):
        self.list_calls += 1
        return list(self.servers.values())

    def get_server(self, uuid):
        if uuid not in self.servers:
            raise VmNotFound("VM %s não existe", uuid)
        return self.servers[uuid]

    def create_server(self, params):
        self.created.append(params)
        return self.add(FakeServer(f"uuid-{len(self.created)}", params))


class FakeProvider(Provider):
    """Provider de plugin usado nos testes; todos compartilham `shared_client`."""
    name = 'Fake'
    shared_client = None

    def build_client(self):
        return type(self).shared_client


@pytest.fixture
def app():
    """
    Cria a instância do Flask configurada para TESTES.
    Usa banco SQLite em memória e recria as tabelas a cada teste.
    """
    app = create_app(TestingConfig)

    with app.app_context():
        # Importar Models aqui para o SQLAlchemy criar as tabelas
        from nubecompute.models import ComputeResource, ComputeProfile, ComputeAttribute, Host, Nic, Image

        db.create_all()

        yield app

        db.session.remove()
        db.drop_all()

    registry.clear()

@pytest.fixture
def client(app):
    """Client HTTP simulado para fazer requisições nas rotas."""
    return app.test_client()

@pytest.fixture
def app_context(app):
    """Fixture de compatibilidade. Alguns testes pedem apenas o contexto ativo."""
    with app.app_context():
        yield

@pytest.fixture
def auth_headers(app):
    with app.app_context():
        token = create_access_token(identity='1')
    return {'Authorization': f'Bearer {token}'}

@pytest.fixture
def fake_client(app):
    """Registra o provider 'Fake' (como um plugin faria) com um client em memória."""
    fake = FakeClient()
    FakeProvider.shared_client = fake
    registry.register('Fake', FakeProvider)
    yield fake
    registry.unregister('Fake')
    FakeProvider.shared_client = None

@pytest.fixture
def fake_resource(app_context, fake_client):
    from nubecompute.models import ComputeResource

    resource = ComputeResource(name='fake-01', provider='Fake', url='http://fake.local/')
    resource.save()
    return resource

@pytest.fixture
def mock_pve_connection(mocker):
    """
    Mocka a classe ProxmoxAPI globalmente.
    Impede que o sistema tente conectar na rede real.
    """
    mock_api = mocker.patch('nubecompute.compute.providers.proxmox.ProxmoxAPI')
    return mock_api.return_value
