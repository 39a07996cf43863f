from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_cors import CORS
from flask_jwt_extended import JWTManager

from nubecompute.compute.registry import ProviderRegistry

# Inicialização das extensões
# Nota: A vinculação com o app (init_app) é feita no __init__.py
db = SQLAlchemy()
migrate = Migrate()
cors = CORS()
jwt = JWTManager()     # Autenticação via Token (API)

# Registro global de providers (builtin + plugins carregados no init_app)
registry = ProviderRegistry()
