class ComputeError(Exception):
    """
    Exceção base do domínio de Compute Resources.
    Aceita mensagem no estilo printf: ComputeError("Not implemented for %s", "EC2").
    """

    def __init__(self, message='', *args):
        if args:
            message = message % args
        super().__init__(message)
        self.message = message


class ValidationError(ComputeError):
    """Violação de restrições do modelo. Carrega os erros por campo."""

    def __init__(self, errors):
        self.errors = errors
        details = '; '.join(f"{field} {', '.join(msgs)}" for field, msgs in errors.items())
        super().__init__(f"Validação falhou: {details}")


class MissingProviderError(ComputeError):
    pass


class UnknownProviderError(ComputeError):
    pass


class ProviderNotFoundError(ComputeError):
    pass


class ProviderNotImplementedError(ComputeError, NotImplementedError):
    """O provider não sobrescreveu uma capacidade obrigatória (ex: client)."""
    pass


class NotSupportedError(ComputeError):
    """O provider, por definição, não oferece a capacidade pedida."""
    pass


class VmNotFound(ComputeError):
    pass


class ResourceInUseError(ComputeError):
    pass


class EncryptionError(ComputeError):
    pass
