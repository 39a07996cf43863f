from flask import Flask, jsonify
import flask
import markupsafe
# Patch para compatibilidade do Flasgger com Flask 3.0+
flask.Markup = markupsafe.Markup

from flasgger import Swagger
from nubecompute.config import DevelopmentConfig

# IMPORTAÇÃO CENTRALIZADA (SINGLETONS)
from nubecompute.extensions import db, migrate, cors, jwt, registry
from nubecompute.encryption import init_encryption
from nubecompute.exceptions import (
    MissingProviderError,
    NotSupportedError,
    ProviderNotFoundError,
    ProviderNotImplementedError,
    ResourceInUseError,
    UnknownProviderError,
    ValidationError,
    VmNotFound,
)

from proxmoxer import ResourceException, AuthenticationError
from nubecompute.compute.providers.proxmox import ProxmoxTaskFailedError
import logging

def create_app(config_class=DevelopmentConfig):
    """Factory do aplicativo Flask"""
    app = Flask(__name__)
    app.config.from_object(config_class)

    # REGISTRO DE COMANDOS
    from nubecompute.commands import init_db_command, providers_command
    app.cli.add_command(init_db_command)
    app.cli.add_command(providers_command)

    # Configuração do Swagger
    swagger_config = {
        "headers": [],
        "specs": [
            {
                "endpoint": 'apispec',
                "route": '/apispec.json',
                "rule_filter": lambda rule: True,
                "model_filter": lambda tag: True,
            }
        ],
        "static_url_path": "/flasgger_static",
        "swagger_ui": True,
        "specs_route": "/docs"
    }

    Swagger(app, config=swagger_config)

    # 1. INICIALIZAR EXTENSÕES (inclui registro de providers e cifragem)
    init_extensions(app)

    # 2. CONFIGURAR LOGGING
    configure_logging(app)

    # 3. REGISTRAR ROTAS
    register_blueprints(app)

    # 4. TRATAMENTO DE ERROS
    register_error_handlers(app)

    return app

def init_extensions(app):
    """Inicializa todas as extensões do Flask."""
    db.init_app(app)
    migrate.init_app(app, db)

    cors.init_app(app, resources={r"/*": {
        "origins": app.config.get('CORS_ORIGINS', []),
        "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization"],
        "expose_headers": ["Content-Range", "X-Total-Count"]
    }}, supports_credentials=True)

    jwt.init_app(app)
    init_encryption(app)

    # Plugins de providers (entry points + COMPUTE_PROVIDER_PLUGINS)
    registry.init_app(app)

def configure_logging(app):
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

def register_blueprints(app):
    """Registra os módulos de rotas (Blueprints)."""
    prefix = app.config.get('API_PREFIX', '/api')

    # Imports dentro da função evitam ciclos com os models
    from nubecompute.api.main import main_bp
    app.register_blueprint(main_bp)

    from nubecompute.api.compute_resources.routes import bp as compute_resources_bp
    app.register_blueprint(compute_resources_bp, url_prefix=f"{prefix}/compute_resources")

def register_error_handlers(app):
    """Centraliza o tratamento de exceções da aplicação."""

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        db.session.rollback()
        return jsonify({'success': False, 'error': e.message, 'errors': e.errors}), 422

    @app.errorhandler(MissingProviderError)
    @app.errorhandler(UnknownProviderError)
    @app.errorhandler(ProviderNotFoundError)
    def handle_provider_error(e):
        return jsonify({'success': False, 'error': e.message, 'errors': {'provider': [e.message]}}), 422

    @app.errorhandler(VmNotFound)
    def handle_vm_not_found(e):
        return jsonify({'success': False, 'error': e.message}), 404

    @app.errorhandler(ProviderNotImplementedError)
    @app.errorhandler(NotSupportedError)
    def handle_not_supported(e):
        app.logger.warning(f"Capacidade indisponível: {e.message}")
        return jsonify({'success': False, 'error': e.message}), 501

    @app.errorhandler(ResourceInUseError)
    def handle_in_use(e):
        db.session.rollback()
        return jsonify({'success': False, 'error': e.message}), 409

    @app.errorhandler(ResourceException)
    def handle_proxmox_resource_error(e):
        app.logger.error(f"Proxmox Resource Error: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500

    @app.errorhandler(AuthenticationError)
    def handle_auth_error(e):
        app.logger.error(f"Proxmox Auth Error: {str(e)}")
        return jsonify({'success': False, 'error': 'Falha de autenticação com o Proxmox backend.'}), 401

    @app.errorhandler(ProxmoxTaskFailedError)
    def handle_task_error(e):
        app.logger.error(f"Proxmox Task Error: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500

    @app.errorhandler(400)
    def handle_bad_request(e):
        return jsonify({'success': False, 'error': e.description}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def handle_generic_error(e):
        app.logger.error(f"Internal Server Error: {str(e)}")
        return jsonify({'success': False, 'error': str(e)}), 500
