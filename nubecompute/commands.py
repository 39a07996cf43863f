import click
from flask.cli import with_appcontext
from nubecompute.extensions import db, registry
from nubecompute.models import ComputeProfile

DEFAULT_PROFILES = ('1-Small', '2-Medium', '3-Large')

@click.command('init-db')
@with_appcontext
def init_db_command():
    """Limpa as tabelas existentes e cria novas com dados iniciais."""

    # 1. Limpar Banco (Cuidado em produção!)
    db.drop_all()
    db.create_all()
    click.echo('Banco de dados recriado.')

    # 2. Perfis de hardware padrão
    for name in DEFAULT_PROFILES:
        db.session.add(ComputeProfile(name=name))
    db.session.commit()
    click.echo(f'Perfis criados: {", ".join(DEFAULT_PROFILES)}')

@click.command('providers')
@with_appcontext
def providers_command():
    """Lista os providers registrados e se estão disponíveis."""
    available = registry.available_providers()
    registered = registry.registered_providers()
    for name, provider_class in sorted(registry.all_providers().items()):
        origin = 'plugin' if name in registered else 'builtin'
        status = 'disponível' if name in available else 'indisponível'
        click.echo(f"{name:15s} {origin:8s} {status:12s} {provider_class.__module__}")
