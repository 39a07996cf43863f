import logging
from datetime import datetime

from sqlalchemy import event, func, inspect, select
from sqlalchemy.ext.mutable import MutableDict

from nubecompute.encryption import EncryptedString
from nubecompute.exceptions import ResourceInUseError, ValidationError
from nubecompute.extensions import db, registry
from nubecompute.models.compute_profile import ComputeAttribute
from nubecompute.models.host import Host, Nic

logger = logging.getLogger(__name__)

# Campos que não entram no histórico de alterações
AUDIT_EXCLUDED = ('password', 'attrs')


def sanitize_url(url):
    """Remove as barras finais: 'http://host//' -> 'http://host'."""
    if not url:
        return url
    return url.rstrip('/')


class ComputeResource(db.Model):
    """
    Conexão configurada com um backend de virtualização ou nuvem.

    O tipo do backend é o `provider` (ex: 'Libvirt'). Ele é escolhido uma
    única vez; toda operação de VM é delegada à instância de Provider
    vinculada (self.backend), que fala com o SDK via client().
    """
    __tablename__ = 'compute_resource'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    _provider = db.Column('provider', db.String(64), nullable=False, index=True)
    description = db.Column(db.Text)
    url = db.Column(db.String(255), nullable=False)
    user = db.Column(db.String(255))
    password = db.Column(EncryptedString)
    attrs = db.Column(MutableDict.as_mutable(db.JSON), nullable=False, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relacionamentos
    images = db.relationship('Image', backref='compute_resource',
                             cascade='all, delete-orphan')
    compute_attributes = db.relationship('ComputeAttribute', backref='compute_resource',
                                         cascade='all, delete-orphan')
    compute_profiles = db.relationship('ComputeProfile', secondary='compute_attribute',
                                       viewonly=True)
    # passive_deletes='all': não anula a FK dos hosts; o delete é bloqueado antes
    hosts = db.relationship('Host', backref='compute_resource', lazy='dynamic',
                            passive_deletes='all')

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.attrs is None:
            self.attrs = {}

    def __repr__(self):
        return f"<ComputeResource {self.name!r} ({self._provider})>"

    def __str__(self):
        return self.to_label()

    @classmethod
    def ordered(cls):
        return cls.query.order_by(cls.name)

    # --- Provider (vinculado uma única vez) ---

    @property
    def provider(self):
        return self._provider

    @provider.setter
    def provider(self, value):
        if self._provider is None:
            if value not in registry.available_providers():
                # Aceito aqui, mas a validação vai rejeitar
                logger.debug(f"Provider desconhecido para compute resource: {value}")
            self._provider = value
            self._backend = None
        elif value != self._provider:
            self._provider_change = value
        else:
            self._provider_change = None

    @property
    def backend(self):
        """Instância do Provider vinculada a este resource."""
        if getattr(self, '_backend', None) is None:
            self._backend = registry.resolve(self._provider)(self)
        return self._backend

    @property
    def provider_friendly_name(self):
        return registry.resolve(self._provider).provider_friendly_name()

    def to_label(self):
        return f"{self.name} ({self.provider_friendly_name})"

    # --- Validação ---

    @property
    def errors(self):
        if getattr(self, '_errors', None) is None:
            self._errors = {}
        return self._errors

    def validate(self):
        """Preenche self.errors ({campo: [mensagens]}) e retorna se é válido."""
        errors = {}

        def add(field, message):
            errors.setdefault(field, []).append(message)

        if not (self.name or '').strip():
            add('name', 'não pode ficar em branco')
        else:
            query = ComputeResource.query.filter(ComputeResource.name == self.name)
            if self.id is not None:
                query = query.filter(ComputeResource.id != self.id)
            with db.session.no_autoflush:
                if query.first() is not None:
                    add('name', 'já está em uso')

        # '///' vira '' depois do sanitize
        if not (sanitize_url(self.url) or '').strip():
            add('url', 'não pode ficar em branco')

        if not self._provider:
            add('provider', 'não pode ficar em branco')
        elif self._provider not in registry.available_providers():
            add('provider', 'não está na lista de providers disponíveis')

        if getattr(self, '_provider_change', None) is not None:
            add('provider', 'não pode ser alterado')

        self._errors = errors
        return not errors

    def is_valid(self):
        return self.validate()

    def audit_changes(self):
        """Campos alterados desde o último load ({campo: (antes, depois)})."""
        changes = {}
        state = inspect(self)
        for attr in state.mapper.column_attrs:
            key = attr.key.lstrip('_')
            if key in AUDIT_EXCLUDED:
                continue
            history = state.attrs[attr.key].history
            if history.has_changes():
                before = history.deleted[0] if history.deleted else None
                after = history.added[0] if history.added else None
                changes[key] = (before, after)
        return changes

    def save(self):
        if not self.validate():
            raise ValidationError(self.errors)
        changes = self.audit_changes()
        if changes:
            logger.info(f"Compute resource {self.name}: alterações {sorted(changes)}")
        db.session.add(self)
        db.session.commit()
        return self

    def destroy(self):
        if self.hosts.count():
            raise ResourceInUseError("%s está em uso por hosts e não pode ser removido", self.name)
        db.session.delete(self)
        db.session.commit()

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'provider': self._provider,
            'label': self.to_label() if self._provider in registry.all_providers() else self.name,
            'url': self.url,
            'user': self.user,
            'description': self.description,
            'attrs': dict(self.attrs or {}),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    # --- Perfis de hardware ---

    def compute_profile_for(self, profile_id):
        return ComputeAttribute.query.filter_by(
            compute_resource_id=self.id, compute_profile_id=profile_id).first()

    def compute_profile_attributes_for(self, profile_id):
        compute_attribute = self.compute_profile_for(profile_id)
        if compute_attribute is None:
            return {}
        return dict(compute_attribute.vm_attrs or {})

    def associate_by(self, field, value):
        """Primeiro Host cuja interface primária tem `field` igual a `value`."""
        column = getattr(Nic, field)
        condition = column.in_(value) if isinstance(value, (list, tuple, set)) else column == value
        return (Host.query.join(Nic, Nic.host_id == Host.id)
                .filter(Nic.primary.is_(True))
                .filter(condition)
                .first())

    # --- Contrato de VMs (delegado ao Provider) ---

    def client(self):
        return self.backend.client()

    def capabilities(self):
        return self.backend.capabilities()

    def provided_attributes(self):
        return self.backend.provided_attributes()

    def test_connection(self, **options):
        return self.backend.test_connection(**options)

    def ping(self):
        self.test_connection()
        return self.errors

    def list_vms(self, **opts):
        return self.backend.list_vms(**opts)

    def find_vm(self, uuid):
        return self.backend.find_vm(uuid)

    def new_vm(self, attrs=None):
        return self.backend.new_vm(attrs)

    def create_vm(self, args=None):
        return self.backend.create_vm(args)

    def save_vm(self, uuid, attrs):
        return self.backend.save_vm(uuid, attrs)

    def start_vm(self, uuid):
        return self.backend.start_vm(uuid)

    def stop_vm(self, uuid):
        return self.backend.stop_vm(uuid)

    def destroy_vm(self, uuid):
        return self.backend.destroy_vm(uuid)

    def console(self, uuid=None):
        return self.backend.console(uuid)

    def new_interface(self, attrs=None):
        return self.backend.new_interface(attrs)

    def vm_instance_defaults(self):
        return self.backend.vm_instance_defaults()

    def templates(self, **opts):
        return self.backend.templates(**opts)

    def template(self, template_id, **opts):
        return self.backend.template(template_id, **opts)

    def random_password(self):
        return self.backend.random_password()

    def available_zones(self):
        return self.backend.available_zones()

    def available_images(self):
        return self.backend.available_images()

    def available_networks(self):
        return self.backend.available_networks()

    def available_clusters(self):
        return self.backend.available_clusters()

    def available_folders(self):
        return self.backend.available_folders()

    def available_flavors(self):
        return self.backend.available_flavors()

    def available_resource_pools(self):
        return self.backend.available_resource_pools()

    def available_security_groups(self):
        return self.backend.available_security_groups()

    def available_storage_domains(self, storage_domain=None):
        return self.backend.available_storage_domains(storage_domain)

    def available_storage_pods(self, storage_pod=None):
        return self.backend.available_storage_pods(storage_pod)

    def supports_update(self):
        return self.backend.supports_update()

    def supports_vms_pagination(self):
        return self.backend.supports_vms_pagination()

    def editable_network_interfaces(self):
        return self.backend.editable_network_interfaces()

    def set_console_password(self):
        return self.backend.set_console_password()

    @property
    def console_password(self):
        return self.set_console_password()

    @console_password.setter
    def console_password(self, setpw):
        self.backend.apply_console_password(setpw)

    @property
    def display_type(self):
        return self.backend.display_type

    @display_type.setter
    def display_type(self, value):
        self.backend.display_type = value

    def user_data_supported(self):
        return self.backend.user_data_supported()

    def image_exists(self, image):
        return self.backend.image_exists(image)

    def image_param_name(self):
        return self.backend.image_param_name()

    def interfaces_attrs_name(self):
        return self.backend.interfaces_attrs_name()

    def host_compute_attrs(self, host):
        return self.backend.host_compute_attrs(host)

    def vm_compute_attributes_for(self, uuid):
        return self.backend.vm_compute_attributes_for(uuid)

    def update_required(self, old_attrs, new_attrs):
        return self.backend.update_required(old_attrs, new_attrs)

    def nested_attributes_for(self, kind, opts):
        return self.backend.nested_attributes_for(kind, opts)


@event.listens_for(ComputeResource, 'before_insert')
@event.listens_for(ComputeResource, 'before_update')
def _sanitize_url(mapper, connection, target):
    target.url = sanitize_url(target.url)


@event.listens_for(ComputeResource, 'before_delete')
def _ensure_not_used_by_hosts(mapper, connection, target):
    in_use = connection.execute(
        select(func.count()).select_from(Host.__table__)
        .where(Host.__table__.c.compute_resource_id == target.id)
    ).scalar()
    if in_use:
        raise ResourceInUseError("%s está em uso por %s host(s)", target.name, in_use)


@event.listens_for(ComputeResource, 'expire')
def _discard_provider_change(target, attrs):
    # rollback/expire descartam a tentativa de troca de provider
    target._provider_change = None
