import asyncio
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from campus_booking.auth.dependencies import PageRedirect, page_for_request, require_roles
from campus_booking.auth.guard import AuthContext, GuardOutcome


def _request(path: str):
    return SimpleNamespace(url=SimpleNamespace(path=path))


@pytest.mark.parametrize(
    ('path', 'page'),
    [
        ('/student/teachers/abc/booking', '/student/teachers'),
        ('/admin/teachers', '/admin/teachers'),
        ('/me', '/me'),
        ('/', '/'),
    ],
)
def test_page_for_request_collapses_role_area_paths(path: str, page: str) -> None:
    assert page_for_request(path) == page


def test_require_roles_returns_context_for_allowed_role(identity_factory, profiles_factory, session) -> None:
    dependency = require_roles('student')
    identity = identity_factory(session('s1'))
    profiles = profiles_factory({'s1': {'role': 'student', 'name': 'Sam'}})

    context = asyncio.run(dependency(_request('/student/appointments'), identity=identity, profiles=profiles))

    assert context == AuthContext(uid='s1', profile={'role': 'student', 'name': 'Sam'})


def test_require_roles_redirects_role_mismatch_to_entry_point(identity_factory, profiles_factory, session) -> None:
    dependency = require_roles('admin')
    identity = identity_factory(session('s1'))
    profiles = profiles_factory({'s1': {'role': 'student'}})

    with pytest.raises(PageRedirect) as exception_info:
        asyncio.run(dependency(_request('/admin/teachers/t1'), identity=identity, profiles=profiles))

    assert exception_info.value.location == '/index.html'
    assert exception_info.value.outcome is GuardOutcome.ROLE_MISMATCH
    assert identity.sign_out_calls == 0


def test_require_roles_signs_out_orphaned_session(identity_factory, profiles_factory, session) -> None:
    dependency = require_roles('teacher')
    identity = identity_factory(session('t1'))

    with pytest.raises(PageRedirect) as exception_info:
        asyncio.run(dependency(_request('/teacher/schedule'), identity=identity, profiles=profiles_factory({})))

    assert exception_info.value.outcome is GuardOutcome.PROFILE_MISSING
    assert identity.sign_out_calls == 1


def test_require_roles_redirects_anonymous_role_area_request(identity_factory, profiles_factory) -> None:
    dependency = require_roles('student')

    with pytest.raises(PageRedirect) as exception_info:
        asyncio.run(dependency(_request('/student/teachers'), identity=identity_factory(None), profiles=profiles_factory({})))

    assert exception_info.value.location == '/index.html'
    assert exception_info.value.outcome is GuardOutcome.NO_SESSION


def test_require_roles_rejects_anonymous_public_request(identity_factory, profiles_factory) -> None:
    dependency = require_roles('student', 'teacher', 'admin')

    with pytest.raises(HTTPException) as exception_info:
        asyncio.run(dependency(_request('/me'), identity=identity_factory(None), profiles=profiles_factory({})))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Not authenticated'
