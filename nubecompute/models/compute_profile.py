from nubecompute.extensions import db
from datetime import datetime

class ComputeProfile(db.Model):
    """Perfil de hardware nomeado (ex: 'small', 'large')."""
    __tablename__ = 'compute_profile'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    compute_attributes = db.relationship('ComputeAttribute', backref='compute_profile',
                                         cascade='all, delete-orphan')


class ComputeAttribute(db.Model):
    """Atributos de VM de um perfil para um Compute Resource específico."""
    __tablename__ = 'compute_attribute'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255))
    compute_resource_id = db.Column(db.Integer, db.ForeignKey('compute_resource.id'), nullable=False)
    compute_profile_id = db.Column(db.Integer, db.ForeignKey('compute_profile.id'), nullable=False)

    vm_attrs = db.Column(db.JSON, default=dict)

    __table_args__ = (
        db.UniqueConstraint('compute_resource_id', 'compute_profile_id'),
    )
