from __future__ import annotations

from collections.abc import Mapping

from rbac_engine.domain.models import RouteAccessEntry, Scope
from rbac_engine.domain.permissions import (
    DEFAULT_CATALOG,
    PERM_BO_CONTRATOS_VIEW,
    PERM_BO_FATURAMENTO_CONFERENCE_VIEW,
    PERM_BO_FATURAMENTO_EXCEPTIONS_MANAGE,
    PERM_BO_FATURAMENTO_EXPORT,
    PERM_BO_FATURAMENTO_PARAMETERS_UPDATE,
    PERM_BO_FATURAMENTO_VIEW,
    PERM_BO_INTEGRACOES_VIEW,
    PERM_BO_RELATORIOS_VIEW,
    PERM_PORTAL_BOLETOS_VIEW,
    PERM_PORTAL_CADASTRO_INDIVIDUAL_UPDATE,
    PERM_PORTAL_CADASTRO_LOTE_UPLOAD,
    PERM_PORTAL_NFSE_VIEW,
    PERM_PORTAL_PORTAL_VIEW,
    PERM_PORTAL_RELATORIOS_VIEW,
    PermissionCatalog,
)


def _portal(*permissions: str) -> RouteAccessEntry:
    return RouteAccessEntry(scope=Scope.PORTAL, permissions=permissions)


def _backoffice(*permissions: str) -> RouteAccessEntry:
    return RouteAccessEntry(scope=Scope.BACKOFFICE, permissions=permissions)


ROUTE_ACCESS: dict[str, RouteAccessEntry] = {
    "/portal": _portal(PERM_PORTAL_PORTAL_VIEW),
    "/portal/atualizacao-lote": _portal(PERM_PORTAL_CADASTRO_LOTE_UPLOAD),
    "/portal/atualizacao-individual": _portal(PERM_PORTAL_CADASTRO_INDIVIDUAL_UPDATE),
    "/portal/eventos-folha": _portal(PERM_PORTAL_PORTAL_VIEW),
    "/portal/calculo-automatico": _portal(PERM_PORTAL_PORTAL_VIEW),
    "/portal/boletos": _portal(PERM_PORTAL_BOLETOS_VIEW),
    "/portal/nfse": _portal(PERM_PORTAL_NFSE_VIEW),
    "/portal/relatorios-movimentacao": _portal(PERM_PORTAL_RELATORIOS_VIEW),
    "/portal/campanhas": _portal(PERM_PORTAL_PORTAL_VIEW),
    "/portal/relatorios": _portal(PERM_PORTAL_RELATORIOS_VIEW),
    "/portal/alertas": _portal(PERM_PORTAL_PORTAL_VIEW),
    "/contratos": _backoffice(PERM_BO_CONTRATOS_VIEW),
    "/contratos/empresas": _backoffice(PERM_BO_CONTRATOS_VIEW),
    "/contratos/funcionarios": _backoffice(PERM_BO_CONTRATOS_VIEW),
    "/contratos/dependentes": _backoffice(PERM_BO_CONTRATOS_VIEW),
    "/contratos/regras": _backoffice(PERM_BO_CONTRATOS_VIEW),
    "/contratos/vigencias": _backoffice(PERM_BO_CONTRATOS_VIEW),
    "/contratos/locais-regras": _backoffice(PERM_BO_CONTRATOS_VIEW),
    "/faturamento": _backoffice(PERM_BO_FATURAMENTO_VIEW),
    "/faturamento/atualizacao-regras": _backoffice(PERM_BO_FATURAMENTO_PARAMETERS_UPDATE),
    "/faturamento/aplicacao-penalidades": _backoffice(PERM_BO_FATURAMENTO_EXCEPTIONS_MANAGE),
    "/faturamento/ajustes-folha": _backoffice(PERM_BO_FATURAMENTO_EXCEPTIONS_MANAGE),
    "/faturamento/amostragem": _backoffice(PERM_BO_FATURAMENTO_PARAMETERS_UPDATE),
    "/faturamento/transferencia-modo": _backoffice(PERM_BO_FATURAMENTO_PARAMETERS_UPDATE),
    "/faturamento/parametros-manuais": _backoffice(PERM_BO_FATURAMENTO_PARAMETERS_UPDATE),
    "/faturamento/lotes": _backoffice(PERM_BO_FATURAMENTO_VIEW),
    "/faturamento/parametros-exportacao": _backoffice(PERM_BO_FATURAMENTO_EXPORT),
    "/faturamento/conferencia": _backoffice(PERM_BO_FATURAMENTO_CONFERENCE_VIEW),
    "/faturamento/grupos": _backoffice(PERM_BO_FATURAMENTO_VIEW),
    "/faturamento/alertas": _backoffice(PERM_BO_FATURAMENTO_VIEW),
    "/faturamento/pisos": _backoffice(PERM_BO_FATURAMENTO_PARAMETERS_UPDATE),
    "/faturamento/penalidades": _backoffice(PERM_BO_FATURAMENTO_PARAMETERS_UPDATE),
    "/faturamento/parametros": _backoffice(PERM_BO_FATURAMENTO_PARAMETERS_UPDATE),
    "/faturamento/importacoes": _backoffice(PERM_BO_FATURAMENTO_VIEW),
    "/relatorios/dashboard": _backoffice(PERM_BO_RELATORIOS_VIEW),
    "/relatorios/integracoes": _backoffice(PERM_BO_INTEGRACOES_VIEW),
    "/relatorios/sobre": _backoffice(PERM_BO_RELATORIOS_VIEW),
}


class RouteAccessTable:
    """Static path -> (scope, permissions) lookup. Paths match exactly."""

    def __init__(
        self,
        entries: Mapping[str, RouteAccessEntry],
        *,
        catalog: PermissionCatalog | None = None,
    ) -> None:
        if catalog is not None:
            for path, entry in entries.items():
                foreign = [key for key in entry.permissions if not catalog.is_in_scope(key, entry.scope)]
                if foreign:
                    raise ValueError(f"route {path} requires keys outside {entry.scope.value}: {foreign}")
        self._entries = dict(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def by_path(self, path: str) -> RouteAccessEntry | None:
        return self._entries.get(path)

    def paths_for_scope(self, scope: Scope) -> list[str]:
        return [path for path, entry in self._entries.items() if entry.scope == scope]


DEFAULT_ROUTE_TABLE = RouteAccessTable(ROUTE_ACCESS, catalog=DEFAULT_CATALOG)
