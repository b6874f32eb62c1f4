import pytest

from complisite.authz.policies import (
    DEFAULT_POLICIES,
    HELPER_FUNCTION_NAMES,
    PolicyScope,
    TablePolicy,
    find_policy_cycles,
    missing_policies,
    render_policy_sql,
    validate_policy_catalog,
)
from complisite.core.errors import PolicyRecursionError
from complisite.diagnostics.schema import REQUIRED_TABLES


def test_default_catalog_has_no_cycles():
    assert find_policy_cycles(DEFAULT_POLICIES) == []
    validate_policy_catalog(DEFAULT_POLICIES, REQUIRED_TABLES)


def test_default_catalog_covers_every_required_table():
    assert missing_policies(DEFAULT_POLICIES, REQUIRED_TABLES) == []


def test_mutually_dependent_membership_tables_are_rejected():
    recursive = (
        TablePolicy("organization_members", PolicyScope.CUSTOM, depends_on=("project_members",),
                    select_sql="EXISTS (SELECT 1 FROM project_members)"),
        TablePolicy("project_members", PolicyScope.CUSTOM, depends_on=("organization_members",),
                    select_sql="EXISTS (SELECT 1 FROM organization_members)"),
    )
    cycles = find_policy_cycles(recursive)
    assert cycles == [["organization_members", "project_members"]]

    with pytest.raises(PolicyRecursionError, match="organization_members -> project_members"):
        validate_policy_catalog(recursive)


def test_self_referencing_policy_is_a_cycle():
    policies = (
        TablePolicy("projects", PolicyScope.CUSTOM, depends_on=("projects",), select_sql="true"),
    )
    assert find_policy_cycles(policies) == [["projects"]]


def test_membership_policy_must_not_read_other_tables():
    policies = (
        TablePolicy("organization_members", PolicyScope.MEMBERSHIP, "organization_id",
                    depends_on=("organizations",)),
        TablePolicy("organizations", PolicyScope.ORGANIZATION, "id"),
    )
    with pytest.raises(PolicyRecursionError, match="Membership policy on organization_members"):
        validate_policy_catalog(policies)


def test_rendered_sql_uses_helpers_for_membership_tables():
    sql = render_policy_sql()

    for name in HELPER_FUNCTION_NAMES:
        assert f"FUNCTION public.{name}(" in sql
    assert "SECURITY DEFINER" in sql
    assert (
        'CREATE POLICY "organization_members_select" ON public.organization_members FOR SELECT '
        "USING (user_id = auth.uid() OR public.is_org_member(organization_id));"
    ) in sql
    assert "ALTER TABLE public.project_members ENABLE ROW LEVEL SECURITY;" in sql
    # Reference data is read-only through the API key
    assert 'CREATE POLICY "certificate_types_write"' not in sql


def test_render_refuses_recursive_catalog():
    recursive = (
        TablePolicy("a_table", PolicyScope.CUSTOM, depends_on=("b_table",), select_sql="true"),
        TablePolicy("b_table", PolicyScope.CUSTOM, depends_on=("a_table",), select_sql="true"),
    )
    with pytest.raises(PolicyRecursionError):
        render_policy_sql(recursive)
