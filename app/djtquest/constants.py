"""
Central constants for the DJT Quest application.
"""
from __future__ import annotations

# Role keys (user_roles)
ROLE_ADMIN = "admin"
ROLE_GERENTE_DJT = "gerente_djt"
ROLE_GERENTE_DIVISAO = "gerente_divisao_djtx"
ROLE_COORDENADOR = "coordenador_djtx"
ROLE_LIDER_EQUIPE = "lider_equipe"
ROLE_COLABORADOR = "colaborador"
ROLE_INVITED = "invited"
ROLE_CONTENT_CURATOR = "content_curator"
ROLE_FINANCE_ANALYST = "analista_financeiro"

ROLE_NAMES = {
    ROLE_ADMIN: "Administrador",
    ROLE_GERENTE_DJT: "Gerente DJT",
    ROLE_GERENTE_DIVISAO: "Gerente de Divisão DJTX",
    ROLE_COORDENADOR: "Coordenador DJTX",
    ROLE_LIDER_EQUIPE: "Líder de Equipe",
    ROLE_COLABORADOR: "Colaborador",
    ROLE_INVITED: "Convidado",
    ROLE_CONTENT_CURATOR: "Curador de Conteúdo",
    ROLE_FINANCE_ANALYST: "Analista Financeiro",
}

# Legacy keys still found in imported user_roles rows.
ROLE_ALIASES = {
    "gerente": ROLE_GERENTE_DJT,
    "lider_divisao": ROLE_GERENTE_DIVISAO,
    "coordenador": ROLE_COORDENADOR,
}

MANAGER_ROLES = frozenset({ROLE_ADMIN, ROLE_GERENTE_DJT, ROLE_GERENTE_DIVISAO, ROLE_COORDENADOR})

# Permission catalogue: key -> (display name, roles granted by seed)
PERMISSIONS = {
    "admin.view": ("Admin: view", (ROLE_ADMIN, ROLE_GERENTE_DJT, ROLE_GERENTE_DIVISAO, ROLE_COORDENADOR)),
    "registrations.review": (
        "Registrations: review",
        (ROLE_ADMIN, ROLE_GERENTE_DJT, ROLE_GERENTE_DIVISAO, ROLE_COORDENADOR, ROLE_LIDER_EQUIPE),
    ),
    "quiz.reset": ("Quiz: reset attempts", (ROLE_ADMIN,)),
    "reports.view": ("Reports: view", (ROLE_ADMIN, ROLE_GERENTE_DJT, ROLE_GERENTE_DIVISAO, ROLE_COORDENADOR)),
}

# Registration / org
GUEST_TEAM_ID = "CONVIDADOS"
REGISTRATION_TEAMS = (
    "DJT",
    "DJT-PLAN",
    "DJTV",
    "DJTV-VOR",
    "DJTV-JUN",
    "DJTV-PJU",
    "DJTV-ITA",
    "DJTB",
    "DJTB-CUB",
    "DJTB-STO",
    GUEST_TEAM_ID,
)
TEAM_ALIASES = {"EXTERNO": GUEST_TEAM_ID}

# Legacy org ids kept visible under the DJT aggregate.
TEAM_SCOPE_EXTRAS = {"DJT": ("DJT-PLAN", "DJT-PLA", "PLA")}

CHAS_DIMENSIONS = ("C", "H", "A", "S")
