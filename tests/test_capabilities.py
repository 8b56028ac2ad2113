import uuid

import pytest

from siteqa.core.rbac.capabilities import Capability, build_actor, resolve_capabilities

BOTH = {Capability.PARTICIPATE, Capability.REVIEW_QUALITY}


@pytest.mark.parametrize("project_role,company_role,expected", [
    ("quality_manager", "member", BOTH),
    ("project_manager", "member", BOTH),
    ("admin", "member", BOTH),
    ("owner", "member", BOTH),
    ("site_engineer", "member", {Capability.PARTICIPATE}),
    ("foreman", "member", {Capability.PARTICIPATE}),
    ("subcontractor", "member", {Capability.PARTICIPATE}),
    ("viewer", "member", set()),
    (None, "member", set()),
    (None, "owner", BOTH),
    ("viewer", "admin", BOTH),
])
def test_resolve_capabilities(project_role, company_role, expected):
    assert resolve_capabilities(project_role, company_role) == frozenset(expected)


def test_actor_can():
    actor = build_actor(uuid.uuid4(), "site_engineer", "member")
    assert actor.can(Capability.PARTICIPATE)
    assert not actor.can(Capability.REVIEW_QUALITY)
