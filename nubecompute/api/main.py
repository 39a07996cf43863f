from flask import Blueprint, jsonify
from flask_cors import cross_origin
from datetime import datetime
from nubecompute.extensions import db, registry
from sqlalchemy import text
import logging

main_bp = Blueprint('main', __name__)
logger = logging.getLogger(__name__)

@main_bp.route('/', methods=['GET'])
def index():
    return jsonify({
        "project": "Nubecompute API",
        "status": "online",
        "documentation": "/docs"
    }), 200

@main_bp.route('/health', methods=['GET'])
@main_bp.route('/api/health', methods=['GET', 'OPTIONS'])
@cross_origin()
def health_check():
    """
    Estado da API, do banco e dos providers carregados.
    ---
    tags:
      - System
    responses:
      200:
        description: Relatório de saúde
    """
    status_report = {
        "status": "online",
        "database": "unknown",
        "providers": registry.provider_names(),
        "details": {},
        "server_time": datetime.utcnow().isoformat()
    }

    try:
        db.session.execute(text('SELECT 1'))
        status_report['database'] = "connected"
    except Exception as e:
        status_report['status'] = "unstable"
        status_report['database'] = "disconnected"
        status_report['details']['db_error'] = str(e)
        logger.error(f"Health check (banco): {e}")

    return jsonify(status_report), 200
