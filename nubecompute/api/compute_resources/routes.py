from flask import Blueprint, jsonify, request, abort
from flask_jwt_extended import jwt_required
from flask_cors import cross_origin
from nubecompute.extensions import registry
from nubecompute.models import ComputeResource

bp = Blueprint('compute_resources', __name__)

# Campos que podem ser alterados via PUT (provider é tratado à parte)
EDITABLE_FIELDS = ('name', 'url', 'user', 'password', 'description', 'attrs')


def get_resource(resource_id):
    return ComputeResource.query.get_or_404(resource_id)


def serialize_vm(vm):
    return {'uuid': vm.identity, 'attributes': vm.attributes}


@bp.route('/providers', methods=['GET', 'OPTIONS'])
@cross_origin()
@jwt_required()
def list_providers():
    """
    Lista os providers disponíveis (dependências instaladas).
    ---
    tags:
      - Compute Resources
    responses:
      200:
        description: Lista de providers
    """
    providers = [
        {'name': name, 'friendly_name': cls.provider_friendly_name()}
        for name, cls in sorted(registry.available_providers().items())
    ]
    return jsonify(providers), 200


@bp.route('/', methods=['GET', 'OPTIONS'])
@cross_origin()
@jwt_required()
def list_compute_resources():
    """
    Lista os Compute Resources ordenados por nome.
    ---
    tags:
      - Compute Resources
    responses:
      200:
        description: Lista de compute resources
    """
    resources = ComputeResource.ordered().all()
    return jsonify([r.to_dict() for r in resources]), 200


@bp.route('/', methods=['POST'])
@cross_origin()
@jwt_required()
def create_compute_resource():
    """
    Cria um Compute Resource vinculado a um provider.
    ---
    tags:
      - Compute Resources
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - name
            - provider
            - url
          properties:
            name:
              type: string
              example: "pve-lab"
            provider:
              type: string
              example: "Proxmox"
            url:
              type: string
              example: "https://pve.local:8006"
            user:
              type: string
              example: "root@pam"
            password:
              type: string
            attrs:
              type: object
    responses:
      201:
        description: Compute resource criado
      422:
        description: Provider ausente/desconhecido ou dados inválidos
    """
    data = request.get_json() or {}
    fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}

    resource = registry.create(data.get('provider'), **fields)
    resource.save()
    return jsonify({'success': True, 'message': 'Compute resource criado.', 'data': resource.to_dict()}), 201


@bp.route('/<int:resource_id>', methods=['GET'])
@cross_origin()
@jwt_required()
def get_compute_resource(resource_id):
    """
    Detalhes de um Compute Resource.
    ---
    tags:
      - Compute Resources
    parameters:
      - name: resource_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Compute resource
      404:
        description: Não encontrado
    """
    resource = get_resource(resource_id)
    data = resource.to_dict()
    data['capabilities'] = sorted(resource.capabilities())
    data['supports_update'] = resource.supports_update()
    return jsonify(data), 200


@bp.route('/<int:resource_id>', methods=['PUT'])
@cross_origin()
@jwt_required()
def update_compute_resource(resource_id):
    """
    Atualiza um Compute Resource. O provider não pode ser alterado.
    ---
    tags:
      - Compute Resources
    parameters:
      - name: resource_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Atualizado
      422:
        description: Dados inválidos (ex: troca de provider)
    """
    resource = get_resource(resource_id)
    data = request.get_json() or {}

    if 'provider' in data:
        resource.provider = data['provider']
    for field in EDITABLE_FIELDS:
        if field in data:
            setattr(resource, field, data[field])

    resource.save()
    return jsonify({'success': True, 'data': resource.to_dict()}), 200


@bp.route('/<int:resource_id>', methods=['DELETE'])
@cross_origin()
@jwt_required()
def delete_compute_resource(resource_id):
    """
    Remove um Compute Resource (bloqueado enquanto houver hosts).
    ---
    tags:
      - Compute Resources
    parameters:
      - name: resource_id
        in: path
        type: integer
        required: true
    responses:
      200:
        description: Removido
      409:
        description: Em uso por hosts
    """
    resource = get_resource(resource_id)
    resource.destroy()
    return jsonify({'success': True, 'message': f'Compute resource {resource_id} removido.'}), 200


@bp.route('/<int:resource_id>/test', methods=['POST'])
@cross_origin()
@jwt_required()
def test_connection(resource_id):
    """
    Testa a conexão com o backend.
    ---
    tags:
      - Compute Resources
    responses:
      200:
        description: Resultado do teste com os erros coletados
    """
    resource = get_resource(resource_id)
    errors = resource.ping()
    return jsonify({'success': not errors, 'errors': errors}), 200


# --- VMs ---

@bp.route('/<int:resource_id>/vms', methods=['GET'])
@cross_origin()
@jwt_required()
def list_vms(resource_id):
    """
    Lista as VMs do backend.
    ---
    tags:
      - VMs
    responses:
      200:
        description: Lista de VMs
    """
    resource = get_resource(resource_id)
    vms = [serialize_vm(vm) for vm in resource.list_vms()]
    return jsonify({'data': vms, 'count': len(vms)}), 200


@bp.route('/<int:resource_id>/vms', methods=['POST'])
@cross_origin()
@jwt_required()
def create_vm(resource_id):
    """
    Cria uma VM. Sem 'name', um nome único é gerado.
    ---
    tags:
      - VMs
    parameters:
      - in: body
        name: body
        schema:
          type: object
    responses:
      201:
        description: VM criada
    """
    resource = get_resource(resource_id)
    vm = resource.create_vm(request.get_json() or {})
    return jsonify({'success': True, 'data': serialize_vm(vm)}), 201


@bp.route('/<int:resource_id>/vms/<uuid>', methods=['GET'])
@cross_origin()
@jwt_required()
def get_vm(resource_id, uuid):
    """
    Atributos atuais da VM.
    ---
    tags:
      - VMs
    responses:
      200:
        description: VM
      404:
        description: VM não encontrada
    """
    resource = get_resource(resource_id)
    return jsonify(serialize_vm(resource.find_vm(uuid))), 200


@bp.route('/<int:resource_id>/vms/<uuid>/<action>', methods=['POST'])
@cross_origin()
@jwt_required()
def vm_power(resource_id, uuid, action):
    """
    Liga (start) ou desliga (stop) uma VM.
    ---
    tags:
      - VMs
    parameters:
      - name: action
        in: path
        type: string
        enum: [start, stop]
        required: true
    responses:
      200:
        description: Ação executada
    """
    resource = get_resource(resource_id)
    if action == 'start':
        resource.start_vm(uuid)
    elif action == 'stop':
        resource.stop_vm(uuid)
    else:
        abort(400, description=f"Ação inválida: {action}")
    return jsonify({'success': True, 'message': f'VM {uuid}: {action} executado.'}), 200


@bp.route('/<int:resource_id>/vms/<uuid>', methods=['DELETE'])
@cross_origin()
@jwt_required()
def destroy_vm(resource_id, uuid):
    """
    Remove a VM. VM inexistente é tratada como já removida.
    ---
    tags:
      - VMs
    responses:
      200:
        description: VM removida
    """
    resource = get_resource(resource_id)
    resource.destroy_vm(uuid)
    return jsonify({'success': True, 'message': f'VM {uuid} removida.'}), 200
