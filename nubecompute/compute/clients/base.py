from abc import ABC, abstractmethod

from nubecompute.exceptions import NotSupportedError


class RemoteServer(ABC):
    """
    Handle de uma VM remota. Não pertence a este sistema, só é referenciada
    pelo identificador opaco (UUID, vmid, instance id...).

    Adapters que expõem discos devem definir o atributo `volumes` com
    objetos que tenham `.attributes`.
    """

    @property
    @abstractmethod
    def identity(self):
        pass

    @property
    @abstractmethod
    def attributes(self):
        """Dicionário com os atributos atuais da VM (inclui 'id')."""
        pass

    @abstractmethod
    def start(self):
        pass

    @abstractmethod
    def stop(self):
        pass

    @abstractmethod
    def destroy(self):
        pass

    def update(self, attrs):
        raise NotSupportedError("Atualização de VM não suportada por %s", type(self).__name__)


class RemoteClient(ABC):
    """Superfície mínima que o ComputeResource exige do SDK do backend."""

    @abstractmethod
    def list_servers(self, **filters):
        pass

    @abstractmethod
    def get_server(self, uuid):
        """Retorna o RemoteServer ou lança VmNotFound."""
        pass

    @abstractmethod
    def create_server(self, params):
        pass

    def new_server(self, params):
        """Servidor ainda não criado no backend. Opcional."""
        raise NotSupportedError("%s não instancia VMs sem criá-las", type(self).__name__)

    def list_interfaces(self):
        return []

    def create_interface(self, params):
        raise NotSupportedError("%s não gerencia interfaces de rede", type(self).__name__)


class VmCollection:
    """
    Sequência preguiçosa de VMs: cada iteração consulta o backend de novo,
    por isso pode ser percorrida várias vezes.
    """

    def __init__(self, client, **filters):
        self.client = client
        self.filters = filters

    def __iter__(self):
        return iter(self.client.list_servers(**self.filters))

    def all(self):
        return list(self)

    def __len__(self):
        return len(self.all())
