"""
Helpers de reconciliação entre os atributos desejados (Host / formulário)
e os atributos reais de uma VM no backend.
"""
import re
from collections.abc import Mapping

_POSITION_RE = re.compile(r'\d+')


def attrs_differ(old_attrs, new_attrs):
    """
    Comparação estrutural profunda.

    Retorna True quando algum valor presente em `new_attrs` difere do
    correspondente em `old_attrs` (chave nova também conta), em qualquer
    nível de aninhamento. Chaves que só existem em `old_attrs` são ignoradas.
    """
    if not isinstance(old_attrs, Mapping) or not isinstance(new_attrs, Mapping):
        return old_attrs != new_attrs

    old_by_key = {str(k): v for k, v in old_attrs.items()}
    for key, new_value in new_attrs.items():
        key = str(key)
        if key not in old_by_key:
            return True
        old_value = old_by_key[key]
        if isinstance(old_value, Mapping) and isinstance(new_value, Mapping):
            if attrs_differ(old_value, new_value):
                return True
        elif old_value != new_value:
            return True
    return False


def indexed(items):
    """[a, b] -> {'0': a, '1': b}"""
    return {str(index): item for index, item in enumerate(items)}


def stringify_keys(value):
    if isinstance(value, Mapping):
        return {str(k): stringify_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [stringify_keys(v) for v in value]
    return value


def _position(key):
    # "new_3" -> 3, "12" -> 12, "abc" -> 0
    match = _POSITION_RE.match(str(key).replace('new_', '', 1))
    return int(match.group()) if match else 0


def parse_nested_params(kind, raw):
    """
    Converte a coleção enviada pelo formulário (ex: discos, interfaces)
    numa lista ordenada.

        {"new_disks": {...}, "1": {"a": 1}, "0": {"b": 2}}
        -> [{"b": 2}, {"a": 1}]

    Remove o template "new_<kind>", ordena pela posição numérica da chave
    e descarta entradas marcadas com _delete='1' que ainda não têm id.
    """
    if not raw:
        return []

    entries = dict(raw)
    entries.pop(f"new_{kind}", None)

    ordered = sorted(entries.items(), key=lambda item: _position(item[0]))

    result = []
    for _, attrs in ordered:
        attrs = stringify_keys(dict(attrs))
        if str(attrs.get('_delete')) == '1' and not attrs.get('id'):
            continue
        result.append(attrs)
    return result


def host_interfaces_attrs(host):
    """Atributos das interfaces físicas do host, indexados pela posição."""
    physical = [nic for nic in host.interfaces if nic.physical]
    return indexed([
        dict(nic.compute_attributes or {}, ip=nic.ip, ip6=nic.ip6)
        for nic in physical
    ])
