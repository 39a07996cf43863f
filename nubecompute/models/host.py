from nubecompute.extensions import db
from datetime import datetime

class Host(db.Model):
    __tablename__ = 'host'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    uuid = db.Column(db.String(255))  # identificador da VM no backend
    provision_method = db.Column(db.String(20), default='build')  # 'build' ou 'image'

    compute_resource_id = db.Column(db.Integer, db.ForeignKey('compute_resource.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Ordem de criação = ordem das placas (nic0, nic1...)
    interfaces = db.relationship('Nic', backref='host', order_by='Nic.id',
                                 cascade='all, delete-orphan')

    @property
    def vm_name(self):
        return self.name

    @property
    def primary_interface(self):
        return next((nic for nic in self.interfaces if nic.primary), None)


class Nic(db.Model):
    __tablename__ = 'nic'

    id = db.Column(db.Integer, primary_key=True)
    host_id = db.Column(db.Integer, db.ForeignKey('host.id'), nullable=False)

    identifier = db.Column(db.String(50))  # ex: eth0
    mac = db.Column(db.String(17))
    ip = db.Column(db.String(15))
    ip6 = db.Column(db.String(45))
    primary = db.Column(db.Boolean, default=False)
    # Interfaces virtuais (VLAN, alias, bond) não viram placas na VM
    virtual = db.Column(db.Boolean, default=False)

    # Atributos específicos do provider (ex: {'network': 'default', 'model': 'virtio'})
    compute_attributes = db.Column(db.JSON, default=dict)

    @property
    def physical(self):
        return not self.virtual
