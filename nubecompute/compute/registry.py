import logging
from importlib import import_module
from importlib.metadata import entry_points

from nubecompute.compute.provider import Provider
from nubecompute.compute.providers import BUILTIN_PROVIDERS
from nubecompute.exceptions import (
    MissingProviderError,
    ProviderNotFoundError,
    UnknownProviderError,
)

ENTRY_POINT_GROUP = 'nubecompute.providers'


class ProviderRegistry:
    """
    Mapa nome -> classe de Provider.

    Junta os providers compilados no pacote (builtin) com os registrados
    por plugins. Em caso de colisão de nomes, o último registro vence.
    """

    def __init__(self, builtin=None):
        self._builtin = dict(BUILTIN_PROVIDERS if builtin is None else builtin)
        self._registered = {}
        self.logger = logging.getLogger(__name__)

    def init_app(self, app):
        """Carrega os plugins declarados (entry points + config do Flask)."""
        self.load_plugins(app.config.get('COMPUTE_PROVIDER_PLUGINS', []))

    # --- Registro ---

    def register(self, name, provider_class):
        if not (isinstance(provider_class, type) and issubclass(provider_class, Provider)):
            raise TypeError(f"{provider_class!r} não é uma subclasse de Provider.")
        if name in self._registered:
            self.logger.info(f"Provider '{name}' re-registrado por {provider_class.__module__}")
        self._registered[name] = provider_class
        return provider_class

    def unregister(self, name):
        self._registered.pop(name, None)

    def clear(self):
        self._registered.clear()

    def load_plugins(self, import_paths=()):
        """
        Descobre plugins via entry points do grupo 'nubecompute.providers'
        e via caminhos "modulo:atributo". Falhas viram warning.
        """
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                self._install(ep.name, ep.load())
            except Exception as e:
                self.logger.warning(f"Falha ao carregar plugin de provider {ep.name}: {e}")

        for path in import_paths:
            module_path, _, attr = path.partition(':')
            try:
                module = import_module(module_path)
                target = getattr(module, attr or 'register')
            except (ImportError, AttributeError) as e:
                self.logger.warning(f"Falha ao carregar plugin de provider {path}: {e}")
                continue
            self._install(attr or module_path, target)

    def _install(self, name, target):
        if isinstance(target, type) and issubclass(target, Provider):
            self.register(target.name or name, target)
        elif callable(target):
            target(self)
        else:
            self.logger.warning(f"Plugin {name} não expõe Provider nem função register().")
            return
        self.logger.info(f"Plugin de provider carregado: {name}")

    # --- Consulta ---

    def builtin_providers(self):
        return dict(self._builtin)

    def registered_providers(self):
        return dict(self._registered)

    def all_providers(self):
        providers = self.builtin_providers()
        providers.update(self._registered)
        return providers

    def available_providers(self):
        """Somente providers cujas dependências estão instaladas."""
        return {
            name: cls for name, cls in self.all_providers().items()
            if cls.is_available()
        }

    def provider_names(self):
        return sorted(self.available_providers())

    def resolve(self, name):
        provider_class = self.all_providers().get(name)
        if provider_class is None:
            raise ProviderNotFoundError("Provider '%s' não registrado", name)
        return provider_class

    def match(self, name):
        """Busca case-insensitive entre os providers disponíveis."""
        if not name:
            return None
        for provider_name in self.available_providers():
            if provider_name.lower() == str(name).lower():
                return provider_name
        return None

    def create(self, provider_name=None, **config):
        """
        Fábrica de ComputeResource já vinculado ao provider.
        O objeto retornado ainda não foi persistido.
        """
        from nubecompute.models.compute_resource import ComputeResource

        if provider_name is None:
            raise MissingProviderError("É obrigatório informar um provider")
        matched = self.match(provider_name)
        if matched is None:
            raise UnknownProviderError("Provider desconhecido: %s", provider_name)
        return ComputeResource(provider=matched, **config)
