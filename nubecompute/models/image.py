from nubecompute.extensions import db
from datetime import datetime

class Image(db.Model):
    __tablename__ = 'image'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    uuid = db.Column(db.String(255), nullable=False)  # ID da imagem no backend (ex: ami-..., 9000)
    username = db.Column(db.String(50))  # usuário usado para finalizar o provisionamento
    user_data = db.Column(db.Boolean, default=False)

    compute_resource_id = db.Column(db.Integer, db.ForeignKey('compute_resource.id'), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'uuid': self.uuid,
            'username': self.username,
            'user_data': self.user_data,
        }
