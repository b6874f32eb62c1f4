"""
Row-level policy catalog - Complisite

Declarative description of the RLS policy on every table, used to:

- check the policy set for evaluation cycles before it is deployed
  (a cycle is what Postgres reports as "infinite recursion detected in policy")
- render the equivalent Postgres SQL (helper functions + CREATE POLICY)

Membership is always read through SECURITY DEFINER helper functions
(is_org_member, is_org_admin, is_project_member, is_project_admin,
get_user_company_id). They query the membership tables without RLS, so a
predicate that calls a helper does not depend on any other table's policy.
Only predicates that sub-select another table directly list it in
``depends_on``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from complisite.core.errors import PolicyRecursionError

logger = logging.getLogger(__name__)


class PolicyScope(str, Enum):
    ORGANIZATION = "organization"   # row carries an organization id
    PROJECT = "project"             # row carries a project id
    MEMBERSHIP = "membership"       # the membership relation itself
    SELF = "self"                   # row belongs to auth.uid()
    PUBLIC = "public"               # reference data, readable by any signed-in user
    CUSTOM = "custom"


@dataclass(frozen=True)
class TablePolicy:
    table: str
    scope: PolicyScope
    column: Optional[str] = None
    depends_on: tuple = ()
    select_sql: Optional[str] = None
    write_sql: Optional[str] = None


def org_policy(table: str, column: str = "organization_id", **kw) -> TablePolicy:
    return TablePolicy(table, PolicyScope.ORGANIZATION, column, **kw)


def project_policy(table: str, column: str = "project_id", **kw) -> TablePolicy:
    return TablePolicy(table, PolicyScope.PROJECT, column, **kw)


DEFAULT_POLICIES: Sequence[TablePolicy] = (
    TablePolicy("companies", PolicyScope.CUSTOM, select_sql="id = public.get_user_company_id()"),
    TablePolicy("users", PolicyScope.SELF, "id"),
    TablePolicy("user_profiles", PolicyScope.SELF, "user_id"),
    org_policy("organizations", "id"),
    TablePolicy("organization_members", PolicyScope.MEMBERSHIP, "organization_id"),
    org_policy("invitations"),
    TablePolicy("project_types", PolicyScope.PUBLIC),
    project_policy(
        "projects",
        "id",
        write_sql="public.is_org_admin(organization_id) OR public.is_project_admin(id)",
    ),
    TablePolicy("project_members", PolicyScope.MEMBERSHIP, "project_id"),
    project_policy("project_compliance"),
    TablePolicy("compliance_templates", PolicyScope.PUBLIC),
    TablePolicy("compliance_checklist_items", PolicyScope.PUBLIC),
    TablePolicy(
        "checklist_completions",
        PolicyScope.CUSTOM,
        depends_on=("project_compliance",),
        select_sql=(
            "EXISTS (SELECT 1 FROM public.project_compliance pc "
            "WHERE pc.id = project_compliance_id AND public.is_project_member(pc.project_id))"
        ),
    ),
    TablePolicy("user_certificates", PolicyScope.SELF, "user_id"),
    TablePolicy(
        "certificate_shares",
        PolicyScope.CUSTOM,
        depends_on=("user_certificates",),
        select_sql=(
            "EXISTS (SELECT 1 FROM public.user_certificates c "
            "WHERE c.id = certificate_id AND c.user_id = auth.uid()) "
            "OR public.is_org_member(shared_with_org_id) "
            "OR public.is_project_member(shared_with_project_id)"
        ),
        write_sql=(
            "EXISTS (SELECT 1 FROM public.user_certificates c "
            "WHERE c.id = certificate_id AND c.user_id = auth.uid())"
        ),
    ),
    TablePolicy("certificate_types", PolicyScope.PUBLIC),
    project_policy("project_required_certificates"),
    project_policy("compliance_photos"),
    project_policy("daily_reports"),
    project_policy("compliance_alerts"),
    org_policy("activity_logs"),
)


# ────────────────────────────────────────────────
# Cycle detection
# ────────────────────────────────────────────────
def dependency_graph(policies: Iterable[TablePolicy]) -> Dict[str, tuple]:
    return {p.table: tuple(p.depends_on) for p in policies}


def _canonical(cycle: List[str]) -> tuple:
    pivot = cycle.index(min(cycle))
    return tuple(cycle[pivot:] + cycle[:pivot])


def find_policy_cycles(policies: Iterable[TablePolicy]) -> List[List[str]]:
    """
    Return every distinct cycle in the policy dependency graph.
    Each cycle is listed once, rotated to start at its smallest table name.
    """
    graph = dependency_graph(policies)
    found: Dict[tuple, None] = {}

    def visit(table: str, path: List[str]) -> None:
        for dep in graph.get(table, ()):
            if dep in path:
                found.setdefault(_canonical(path[path.index(dep):]), None)
            elif dep in graph:
                visit(dep, path + [dep])

    for table in graph:
        visit(table, [table])

    return [list(cycle) for cycle in found]


def missing_policies(policies: Iterable[TablePolicy], tables: Iterable[str]) -> List[str]:
    covered = {p.table for p in policies}
    return [t for t in tables if t not in covered]


def validate_policy_catalog(
    policies: Sequence[TablePolicy],
    required_tables: Optional[Iterable[str]] = None,
) -> None:
    """
    Raise PolicyRecursionError if any policy (transitively) depends on itself
    or a membership table depends on another table's policy.
    """
    for policy in policies:
        if policy.scope is PolicyScope.MEMBERSHIP and policy.depends_on:
            raise PolicyRecursionError(
                f"Membership policy on {policy.table} must not depend on "
                f"{', '.join(policy.depends_on)}"
            )

    cycles = find_policy_cycles(policies)
    if cycles:
        rendered = "; ".join(" -> ".join(c + [c[0]]) for c in cycles)
        raise PolicyRecursionError(f"Policy evaluation cycles: {rendered}")

    if required_tables is not None:
        missing = missing_policies(policies, required_tables)
        if missing:
            logger.warning("Tables without a row-level policy", extra={"tables": missing})


# ────────────────────────────────────────────────
# SQL rendering
# ────────────────────────────────────────────────
HELPER_FUNCTIONS_SQL = """\
CREATE OR REPLACE FUNCTION public.is_org_member(org_id uuid)
RETURNS boolean LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public AS $$
  SELECT EXISTS (
    SELECT 1 FROM organization_members
    WHERE organization_id = org_id AND user_id = auth.uid() AND status = 'active'
  );
$$;

CREATE OR REPLACE FUNCTION public.is_org_admin(org_id uuid)
RETURNS boolean LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public AS $$
  SELECT EXISTS (
    SELECT 1 FROM organization_members
    WHERE organization_id = org_id AND user_id = auth.uid()
      AND status = 'active' AND role = 'admin'
  );
$$;

CREATE OR REPLACE FUNCTION public.is_project_member(p_id uuid)
RETURNS boolean LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public AS $$
  SELECT NOT EXISTS (
    SELECT 1 FROM project_members
    WHERE project_id = p_id AND user_id = auth.uid() AND status = 'revoked'
  ) AND (
    EXISTS (
      SELECT 1 FROM project_members
      WHERE project_id = p_id AND user_id = auth.uid() AND status = 'active'
    ) OR EXISTS (
      SELECT 1 FROM projects p
      JOIN organization_members m ON m.organization_id = p.organization_id
      WHERE p.id = p_id AND m.user_id = auth.uid()
        AND m.status = 'active' AND m.role IN ('admin', 'manager')
    )
  );
$$;

CREATE OR REPLACE FUNCTION public.is_project_admin(p_id uuid)
RETURNS boolean LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public AS $$
  SELECT NOT EXISTS (
    SELECT 1 FROM project_members
    WHERE project_id = p_id AND user_id = auth.uid() AND status = 'revoked'
  ) AND (
    EXISTS (
      SELECT 1 FROM project_members
      WHERE project_id = p_id AND user_id = auth.uid()
        AND status = 'active' AND role = 'manager'
    ) OR EXISTS (
      SELECT 1 FROM projects p
      JOIN organization_members m ON m.organization_id = p.organization_id
      WHERE p.id = p_id AND m.user_id = auth.uid()
        AND m.status = 'active' AND m.role IN ('admin', 'manager')
    )
  );
$$;

CREATE OR REPLACE FUNCTION public.get_user_company_id()
RETURNS uuid LANGUAGE sql STABLE SECURITY DEFINER SET search_path = public AS $$
  SELECT company_id FROM users WHERE id = auth.uid();
$$;
"""

HELPER_FUNCTION_NAMES = (
    "is_org_member",
    "is_org_admin",
    "is_project_member",
    "is_project_admin",
    "get_user_company_id",
)


def policy_predicates(policy: TablePolicy) -> tuple:
    """(select predicate, write predicate or None) for a policy."""
    col = policy.column
    if policy.scope is PolicyScope.ORGANIZATION:
        select_sql = f"public.is_org_member({col})"
        write_sql = f"public.is_org_admin({col})"
    elif policy.scope is PolicyScope.PROJECT:
        select_sql = f"public.is_project_member({col})"
        write_sql = f"public.is_project_member({col})"
    elif policy.scope is PolicyScope.MEMBERSHIP:
        if col == "organization_id":
            select_sql = f"user_id = auth.uid() OR public.is_org_member({col})"
            write_sql = f"public.is_org_admin({col})"
        else:
            select_sql = f"user_id = auth.uid() OR public.is_project_member({col})"
            write_sql = f"public.is_project_admin({col})"
    elif policy.scope is PolicyScope.SELF:
        select_sql = f"{col} = auth.uid()"
        write_sql = select_sql
    elif policy.scope is PolicyScope.PUBLIC:
        select_sql = "auth.role() = 'authenticated'"
        write_sql = None
    else:
        select_sql = None
        write_sql = None

    return policy.select_sql or select_sql, policy.write_sql or write_sql


def render_policy_sql(policies: Sequence[TablePolicy] = DEFAULT_POLICIES) -> str:
    """Render helper functions plus DROP/CREATE POLICY statements for every table."""
    validate_policy_catalog(policies)

    statements = [HELPER_FUNCTIONS_SQL]
    for policy in policies:
        select_sql, write_sql = policy_predicates(policy)
        table = f"public.{policy.table}"
        statements.append(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;")
        if select_sql:
            statements.append(f'DROP POLICY IF EXISTS "{policy.table}_select" ON {table};')
            statements.append(
                f'CREATE POLICY "{policy.table}_select" ON {table} FOR SELECT USING ({select_sql});'
            )
        if write_sql:
            statements.append(f'DROP POLICY IF EXISTS "{policy.table}_write" ON {table};')
            statements.append(
                f'CREATE POLICY "{policy.table}_write" ON {table} FOR ALL '
                f"USING ({write_sql}) WITH CHECK ({write_sql});"
            )
    return "\n".join(statements) + "\n"
