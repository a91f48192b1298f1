from __future__ import annotations

from collections.abc import Iterable

from rbac_engine.domain.errors import InvalidPermissionError
from rbac_engine.domain.models import Permission, Scope

PERM_BO_ADMIN_MANAGE_USERS = "BACKOFFICE.ADMIN.MANAGE_USERS"
PERM_BO_CLIENTES_VIEW = "BACKOFFICE.CLIENTES.VIEW"
PERM_BO_CLIENTES_CREATE = "BACKOFFICE.CLIENTES.CREATE"
PERM_BO_CLIENTES_UPDATE = "BACKOFFICE.CLIENTES.UPDATE"
PERM_BO_CLIENTES_DELETE = "BACKOFFICE.CLIENTES.DELETE"
PERM_BO_CONTRATOS_VIEW = "BACKOFFICE.CONTRATOS.VIEW"
PERM_BO_CONTRATOS_CREATE = "BACKOFFICE.CONTRATOS.CREATE"
PERM_BO_CONTRATOS_UPDATE = "BACKOFFICE.CONTRATOS.UPDATE"
PERM_BO_CONTRATOS_DELETE = "BACKOFFICE.CONTRATOS.DELETE"
PERM_BO_FATURAMENTO_VIEW = "BACKOFFICE.FATURAMENTO.VIEW"
PERM_BO_FATURAMENTO_RUN = "BACKOFFICE.FATURAMENTO.RUN"
PERM_BO_FATURAMENTO_PARAMETERS_UPDATE = "BACKOFFICE.FATURAMENTO.PARAMETERS_UPDATE"
PERM_BO_FATURAMENTO_EXCEPTIONS_MANAGE = "BACKOFFICE.FATURAMENTO.EXCEPTIONS_MANAGE"
PERM_BO_FATURAMENTO_CONFERENCE_VIEW = "BACKOFFICE.FATURAMENTO.CONFERENCE_VIEW"
PERM_BO_FATURAMENTO_CONFERENCE_APPROVE = "BACKOFFICE.FATURAMENTO.CONFERENCE_APPROVE"
PERM_BO_FATURAMENTO_EXPORT = "BACKOFFICE.FATURAMENTO.EXPORT"
PERM_BO_INTEGRACOES_VIEW = "BACKOFFICE.INTEGRACOES.VIEW"
PERM_BO_INTEGRACOES_MANAGE = "BACKOFFICE.INTEGRACOES.MANAGE"
PERM_BO_MONITORAMENTO_MONITOR = "BACKOFFICE.MONITORAMENTO.MONITOR"
PERM_BO_FEATURES_AUTO_BOLETO_TOGGLE = "BACKOFFICE.FEATURES.AUTO_BOLETO.TOGGLE"
PERM_BO_RELATORIOS_VIEW = "BACKOFFICE.RELATORIOS.VIEW"

PERM_PORTAL_ADMIN_MANAGE_USERS = "PORTAL.ADMIN.MANAGE_USERS"
PERM_PORTAL_CADASTRO_LOTE_UPLOAD = "PORTAL.CADASTRO_LOTE.UPLOAD"
PERM_PORTAL_CADASTRO_LOTE_VALIDATE = "PORTAL.CADASTRO_LOTE.VALIDATE"
PERM_PORTAL_CADASTRO_INDIVIDUAL_UPDATE = "PORTAL.CADASTRO_INDIVIDUAL.UPDATE"
PERM_PORTAL_BOLETOS_VIEW = "PORTAL.BOLETOS.VIEW"
PERM_PORTAL_BOLETOS_EMITIR = "PORTAL.BOLETOS.EMITIR"
PERM_PORTAL_BOLETOS_PRORROGAR = "PORTAL.BOLETOS.PRORROGAR"
PERM_PORTAL_NFSE_VIEW = "PORTAL.NFSE.VIEW"
PERM_PORTAL_NFSE_IMPRIMIR = "PORTAL.NFSE.IMPRIMIR"
PERM_PORTAL_RELATORIOS_VIEW = "PORTAL.RELATORIOS.VIEW"
PERM_PORTAL_RELATORIOS_EXPORT = "PORTAL.RELATORIOS.EXPORT"
PERM_PORTAL_SUPORTE_CHAMADOS_CREATE = "PORTAL.SUPORTE.CHAMADOS.CREATE"
PERM_PORTAL_SUPORTE_CHAMADOS_VIEW = "PORTAL.SUPORTE.CHAMADOS.VIEW"
PERM_PORTAL_PORTAL_VIEW = "PORTAL.PORTAL.VIEW"

MANAGE_USERS_PERMISSION: dict[Scope, str] = {
    Scope.BACKOFFICE: PERM_BO_ADMIN_MANAGE_USERS,
    Scope.PORTAL: PERM_PORTAL_ADMIN_MANAGE_USERS,
}


def define_permission(key: str, description: str) -> Permission:
    """Build a catalog entry from a ``<SCOPE>.<MODULE>.<ACTION>`` key.

    Actions spanning more than one segment are joined with underscores, so
    ``PORTAL.SUPORTE.CHAMADOS.CREATE`` has module ``SUPORTE`` and action
    ``CHAMADOS_CREATE``.
    """
    parts = key.split(".")
    if len(parts) < 3:
        raise ValueError(f"permission key must have scope, module and action: {key}")
    return Permission(
        key=key,
        scope=Scope(parts[0]),
        module=parts[1],
        action="_".join(parts[2:]),
        description=description,
    )


PERMISSIONS: tuple[Permission, ...] = (
    define_permission(PERM_BO_ADMIN_MANAGE_USERS, "Manage system users"),
    define_permission(PERM_BO_CLIENTES_VIEW, "View clients"),
    define_permission(PERM_BO_CLIENTES_CREATE, "Create clients"),
    define_permission(PERM_BO_CLIENTES_UPDATE, "Update client data"),
    define_permission(PERM_BO_CLIENTES_DELETE, "Delete clients"),
    define_permission(PERM_BO_CONTRATOS_VIEW, "View contracts"),
    define_permission(PERM_BO_CONTRATOS_CREATE, "Create contracts"),
    define_permission(PERM_BO_CONTRATOS_UPDATE, "Update contracts"),
    define_permission(PERM_BO_CONTRATOS_DELETE, "Delete contracts"),
    define_permission(PERM_BO_FATURAMENTO_VIEW, "View billing"),
    define_permission(PERM_BO_FATURAMENTO_RUN, "Run billing"),
    define_permission(PERM_BO_FATURAMENTO_PARAMETERS_UPDATE, "Update billing parameters"),
    define_permission(PERM_BO_FATURAMENTO_EXCEPTIONS_MANAGE, "Manage billing exceptions"),
    define_permission(PERM_BO_FATURAMENTO_CONFERENCE_VIEW, "View billing review"),
    define_permission(PERM_BO_FATURAMENTO_CONFERENCE_APPROVE, "Approve billing review"),
    define_permission(PERM_BO_FATURAMENTO_EXPORT, "Export billing data"),
    define_permission(PERM_BO_INTEGRACOES_VIEW, "View integrations"),
    define_permission(PERM_BO_INTEGRACOES_MANAGE, "Manage integrations"),
    define_permission(PERM_BO_MONITORAMENTO_MONITOR, "Monitor the system"),
    define_permission(PERM_BO_FEATURES_AUTO_BOLETO_TOGGLE, "Toggle automatic boleto issuing"),
    define_permission(PERM_BO_RELATORIOS_VIEW, "View reports"),
    define_permission(PERM_PORTAL_ADMIN_MANAGE_USERS, "Manage portal users"),
    define_permission(PERM_PORTAL_CADASTRO_LOTE_UPLOAD, "Upload batch registrations"),
    define_permission(PERM_PORTAL_CADASTRO_LOTE_VALIDATE, "Validate batch registrations"),
    define_permission(PERM_PORTAL_CADASTRO_INDIVIDUAL_UPDATE, "Update individual registrations"),
    define_permission(PERM_PORTAL_BOLETOS_VIEW, "View boletos"),
    define_permission(PERM_PORTAL_BOLETOS_EMITIR, "Issue boletos"),
    define_permission(PERM_PORTAL_BOLETOS_PRORROGAR, "Extend boleto due dates"),
    define_permission(PERM_PORTAL_NFSE_VIEW, "View service invoices"),
    define_permission(PERM_PORTAL_NFSE_IMPRIMIR, "Print service invoices"),
    define_permission(PERM_PORTAL_RELATORIOS_VIEW, "View reports"),
    define_permission(PERM_PORTAL_RELATORIOS_EXPORT, "Export reports"),
    define_permission(PERM_PORTAL_SUPORTE_CHAMADOS_CREATE, "Open support tickets"),
    define_permission(PERM_PORTAL_SUPORTE_CHAMADOS_VIEW, "View support tickets"),
    define_permission(PERM_PORTAL_PORTAL_VIEW, "Access the customer portal"),
)


class PermissionCatalog:
    """Read-only registry of every valid permission key.

    Lookups fail closed: unknown keys resolve to ``None``, ``False`` or an empty
    list. ``validate_keys`` is the gate used at write boundaries and raises.
    """

    def __init__(self, permissions: Iterable[Permission]) -> None:
        self._by_key: dict[str, Permission] = {}
        for permission in permissions:
            if permission.key in self._by_key:
                raise ValueError(f"duplicate permission key: {permission.key}")
            self._by_key[permission.key] = permission

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)

    def list_all(self) -> list[Permission]:
        return list(self._by_key.values())

    def by_scope(self, scope: Scope) -> list[Permission]:
        return [item for item in self._by_key.values() if item.scope == scope]

    def keys_for_scope(self, scope: Scope) -> list[str]:
        return [item.key for item in self.by_scope(scope)]

    def get(self, key: str) -> Permission | None:
        return self._by_key.get(key)

    def scope_of(self, key: str) -> Scope | None:
        permission = self._by_key.get(key)
        return permission.scope if permission is not None else None

    def is_in_scope(self, key: str, scope: Scope) -> bool:
        return self.scope_of(key) == scope

    def modules(self, scope: Scope) -> dict[str, list[Permission]]:
        grouped: dict[str, list[Permission]] = {}
        for permission in self.by_scope(scope):
            grouped.setdefault(permission.module, []).append(permission)
        return {module: grouped[module] for module in sorted(grouped)}

    def validate_keys(self, keys: Iterable[str], scope: Scope) -> list[str]:
        requested = sorted(set(keys))
        invalid = [key for key in requested if not self.is_in_scope(key, scope)]
        if invalid:
            raise InvalidPermissionError(
                f"permissions outside scope {scope.value}: {', '.join(invalid)}",
                keys=invalid,
            )
        return requested


DEFAULT_CATALOG = PermissionCatalog(PERMISSIONS)
