"""
Integration Tests for the auth endpoints
Tests for: register, login, lockout, rate limits, logout, status, me, CSRF, change-password
"""
import bcrypt
import pytest

from conftest import API, STRONG_PASSWORD, login
from app.models.user import UserRole

NEW_PASSWORD = 'C0rrect-Horse-Battery'


class TestRegister:
    """Test POST /auth/register"""

    @pytest.mark.asyncio
    async def test_register_success(self, client):
        response = await client.post(f'{API}/auth/register', json={
            'email': 'New.Student@College.edu',
            'password': STRONG_PASSWORD,
            'full_name': 'New Student',
            'specialty': 'Physics',
        })

        assert response.status_code == 201
        data = response.json()
        assert data['success'] is True
        assert data['token']
        assert data['user']['email'] == 'new.student@college.edu'
        assert data['user']['role'] == 'student'
        assert 'password' not in data['user']
        assert 'hashed_password' not in data['user']
        assert 'college_sid' in response.cookies

    @pytest.mark.asyncio
    async def test_register_cannot_choose_role(self, client):
        response = await client.post(f'{API}/auth/register', json={
            'email': 'sneaky@college.edu',
            'password': STRONG_PASSWORD,
            'full_name': 'Sneaky',
            'role': 'admin',
        })

        assert response.status_code == 201
        assert response.json()['user']['role'] == 'student'

    @pytest.mark.asyncio
    async def test_register_common_password_rejected(self, client):
        response = await client.post(f'{API}/auth/register', json={
            'email': 'weak@college.edu',
            'password': 'password123',
            'full_name': 'Weak Password',
        })

        assert response.status_code == 400
        data = response.json()
        assert data['success'] is False
        assert 'too common' in data['message']
        assert data['errors'][0]['field'] == 'password'

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, client, student):
        response = await client.post(f'{API}/auth/register', json={
            'email': 'STUDENT@college.edu',
            'password': STRONG_PASSWORD,
            'full_name': 'Duplicate',
        })

        assert response.status_code == 400
        assert response.json()['errors'][0]['field'] == 'email'

    @pytest.mark.asyncio
    async def test_register_invalid_email(self, client):
        response = await client.post(f'{API}/auth/register', json={
            'email': 'not-an-email',
            'password': STRONG_PASSWORD,
            'full_name': 'Bad Email',
        })

        assert response.status_code == 400
        data = response.json()
        assert data['success'] is False
        assert data['message'] == 'Validation failed'
        assert data['errors'][0]['field'] == 'email'


class TestLogin:
    """Test POST /auth/login"""

    @pytest.mark.asyncio
    async def test_login_success(self, client, student):
        response = await client.post(f'{API}/auth/login', json={
            'email': student.email,
            'password': STRONG_PASSWORD,
        })

        assert response.status_code == 200
        data = response.json()
        assert data['success'] is True
        assert data['message'] == 'Login successful'
        assert data['token']
        assert data['user']['id'] == str(student.id)
        assert 'hashed_password' not in data['user']

    @pytest.mark.asyncio
    async def test_session_cookie_attributes(self, client, student):
        response = await client.post(f'{API}/auth/login', json={
            'email': student.email,
            'password': STRONG_PASSWORD,
        })

        cookie = response.headers['set-cookie'].lower()
        assert cookie.startswith('college_sid=')
        assert 'httponly' in cookie
        assert 'secure' in cookie
        assert 'samesite=lax' in cookie

    @pytest.mark.asyncio
    async def test_login_email_case_insensitive(self, client, student):
        response = await client.post(f'{API}/auth/login', json={
            'email': 'Student@College.EDU',
            'password': STRONG_PASSWORD,
        })

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_account_look_the_same(self, client, student):
        wrong = await client.post(f'{API}/auth/login', json={
            'email': student.email,
            'password': 'Wr0ng-Password!',
        })
        unknown = await client.post(f'{API}/auth/login', json={
            'email': 'nobody@college.edu',
            'password': 'Wr0ng-Password!',
        })

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {'success': False, 'message': 'Invalid email or password'}

    @pytest.mark.asyncio
    async def test_inactive_account(self, client, create_user):
        user = await create_user(UserRole.STUDENT, email='disabled@college.edu', is_active=False)

        response = await client.post(f'{API}/auth/login', json={
            'email': user.email,
            'password': STRONG_PASSWORD,
        })

        assert response.status_code == 403
        assert response.json()['message'] == 'Account is disabled'

    @pytest.mark.asyncio
    async def test_unknown_account_hashes_nothing_per_request(self, app, client, monkeypatch):
        """The dummy hash for unknown accounts is built with the app, not on the event loop"""
        assert app.state.security.dummy_password_hash.startswith('$2')

        def no_hashing(*args, **kwargs):
            raise AssertionError('bcrypt.hashpw called while serving a login')

        monkeypatch.setattr(bcrypt, 'hashpw', no_hashing)

        response = await client.post(f'{API}/auth/login', json={
            'email': 'nobody@college.edu',
            'password': 'Wr0ng-Password!',
        })

        assert response.status_code == 401


class TestBruteForce:
    """Test lockout and per-category rate limits"""

    @pytest.mark.asyncio
    async def test_lockout_refuses_correct_password(self, make_settings, client_for, student):
        """Five failures lock the account even for the right password"""
        app_settings = make_settings(RATE_LIMIT_AUTH_MAX=50)
        async with client_for(app_settings) as client:
            for _ in range(5):
                response = await client.post(f'{API}/auth/login', json={
                    'email': student.email,
                    'password': 'Wr0ng-Password!',
                })
                assert response.status_code == 401

            response = await client.post(f'{API}/auth/login', json={
                'email': student.email,
                'password': STRONG_PASSWORD,
            })

        assert response.status_code == 429
        assert 'locked' in response.json()['message']
        assert int(response.headers['Retry-After']) > 0

    @pytest.mark.asyncio
    async def test_successful_login_resets_failures(self, make_settings, client_for, student):
        app_settings = make_settings(RATE_LIMIT_AUTH_MAX=50)
        async with client_for(app_settings) as client:
            for _ in range(4):
                await client.post(f'{API}/auth/login', json={'email': student.email, 'password': 'Wr0ng-Password!'})
            await login(client, student.email)

            for _ in range(4):
                await client.post(f'{API}/auth/login', json={'email': student.email, 'password': 'Wr0ng-Password!'})
            response = await client.post(f'{API}/auth/login', json={
                'email': student.email,
                'password': STRONG_PASSWORD,
            })

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_sixth_auth_request_rate_limited(self, client):
        for _ in range(5):
            response = await client.post(f'{API}/auth/login', json={
                'email': 'nobody@college.edu',
                'password': 'Wr0ng-Password!',
            })
            assert response.status_code in (401, 429)

        response = await client.post(f'{API}/auth/login', json={
            'email': 'someone.else@college.edu',
            'password': 'Wr0ng-Password!',
        })

        assert response.status_code == 429
        assert response.json()['message'] == 'Too many login attempts. Please try again in 15 minutes.'
        assert 0 < int(response.headers['Retry-After']) <= 900

    @pytest.mark.asyncio
    async def test_forwarded_header_does_not_bypass_limit(self, client):
        for i in range(5):
            await client.post(
                f'{API}/auth/login',
                json={'email': 'nobody@college.edu', 'password': 'Wr0ng-Password!'},
                headers={'X-Forwarded-For': f'198.51.100.{i}'},
            )

        response = await client.post(
            f'{API}/auth/login',
            json={'email': 'nobody@college.edu', 'password': 'Wr0ng-Password!'},
            headers={'X-Forwarded-For': '198.51.100.99'},
        )

        assert response.status_code == 429


class TestSessionsAndTokens:
    """Test /me, /status and /logout"""

    @pytest.mark.asyncio
    async def test_me_with_bearer(self, client, student, auth_headers):
        headers = await auth_headers(student)

        response = await client.get(f'{API}/auth/me', headers=headers)

        assert response.status_code == 200
        assert response.json()['user']['email'] == student.email

    @pytest.mark.asyncio
    async def test_me_with_session_cookie(self, client, student):
        await login(client, student.email)

        response = await client.get(f'{API}/auth/me')

        assert response.status_code == 200
        assert response.json()['user']['email'] == student.email

    @pytest.mark.asyncio
    async def test_me_requires_authentication(self, client):
        response = await client.get(f'{API}/auth/me')

        assert response.status_code == 401
        assert response.json() == {'success': False, 'message': 'Authentication required'}

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get(f'{API}/auth/me', headers={'Authorization': 'Bearer not-a-jwt'})

        assert response.status_code == 401
        assert response.json()['message'] == 'Invalid token'

    @pytest.mark.asyncio
    async def test_tampered_cookie(self, client, student):
        await login(client, student.email)
        session_id, signature = client.cookies['college_sid'].rsplit('.', 1)
        client.cookies.clear()

        response = await client.get(
            f'{API}/auth/me',
            headers={'Cookie': f"college_sid={session_id}.{'0' * len(signature)}"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_invalidates_token(self, client, student, auth_headers):
        headers = await auth_headers(student)

        response = await client.post(f'{API}/auth/logout', headers=headers)
        assert response.status_code == 200
        assert response.json()['success'] is True

        response = await client.get(f'{API}/auth/me', headers=headers)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_with_cookie(self, client, student):
        await login(client, student.email)
        csrf = (await client.get(f'{API}/auth/csrf-token')).json()['csrf_token']

        await client.post(f'{API}/auth/logout', headers={'X-CSRF-Token': csrf})
        response = await client.get(f'{API}/auth/me')

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_cookie_logout_without_csrf_token_refused(self, client, student):
        await login(client, student.email)

        response = await client.post(f'{API}/auth/logout')

        assert response.status_code == 403
        assert (await client.get(f'{API}/auth/me')).status_code == 200

    @pytest.mark.asyncio
    async def test_logout_without_session_succeeds(self, client):
        response = await client.post(f'{API}/auth/logout')

        assert response.status_code == 200
        assert response.json()['success'] is True

    @pytest.mark.asyncio
    async def test_status(self, client, student, auth_headers):
        anonymous = await client.get(f'{API}/auth/status')
        assert anonymous.status_code == 200
        assert anonymous.json()['authenticated'] is False

        headers = await auth_headers(student)
        signed_in = await client.get(f'{API}/auth/status', headers=headers)

        assert signed_in.json()['authenticated'] is True
        assert signed_in.json()['user']['role'] == 'student'


class TestCsrfProtection:
    """Test that cookie-authenticated writes need the session's CSRF token"""

    @pytest.mark.asyncio
    async def test_cookie_only_change_password_refused(self, client, student):
        await login(client, student.email)

        response = await client.post(f'{API}/auth/change-password', json={
            'current_password': STRONG_PASSWORD,
            'new_password': NEW_PASSWORD,
        })

        assert response.status_code == 403
        assert response.json() == {'success': False, 'message': 'CSRF token missing or invalid'}

    @pytest.mark.asyncio
    async def test_cookie_change_password_with_token(self, client, student):
        await login(client, student.email)
        token_response = await client.get(f'{API}/auth/csrf-token')
        assert token_response.status_code == 200

        response = await client.post(
            f'{API}/auth/change-password',
            headers={'X-CSRF-Token': token_response.json()['csrf_token']},
            json={'current_password': STRONG_PASSWORD, 'new_password': NEW_PASSWORD},
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_token_from_another_session_refused(self, client, student):
        await login(client, student.email)
        stale = (await client.get(f'{API}/auth/csrf-token')).json()['csrf_token']
        client.cookies.clear()
        await login(client, student.email)

        response = await client.post(
            f'{API}/auth/change-password',
            headers={'X-CSRF-Token': stale},
            json={'current_password': STRONG_PASSWORD, 'new_password': NEW_PASSWORD},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_bearer_writes_need_no_token(self, client, student, auth_headers):
        headers = await auth_headers(student)

        response = await client.post(f'{API}/auth/change-password', headers=headers, json={
            'current_password': STRONG_PASSWORD,
            'new_password': NEW_PASSWORD,
        })

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_csrf_token_requires_session(self, client, student, auth_headers):
        headers = await auth_headers(student)

        response = await client.get(f'{API}/auth/csrf-token', headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_login_with_stale_cookie_unaffected(self, client, student):
        await login(client, student.email)

        await login(client, student.email)


class TestChangePassword:
    """Test POST /auth/change-password"""

    @pytest.mark.asyncio
    async def test_change_password(self, client, student, auth_headers):
        headers = await auth_headers(student)

        response = await client.post(f'{API}/auth/change-password', headers=headers, json={
            'current_password': STRONG_PASSWORD,
            'new_password': NEW_PASSWORD,
        })

        assert response.status_code == 200
        data = response.json()
        assert data['success'] is True
        assert 0 < data['password_strength'] <= 100

        old = await client.post(f'{API}/auth/login', json={'email': student.email, 'password': STRONG_PASSWORD})
        assert old.status_code == 401
        await login(client, student.email, NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, client, student, auth_headers):
        headers = await auth_headers(student)

        response = await client.post(f'{API}/auth/change-password', headers=headers, json={
            'current_password': 'Wr0ng-Password!',
            'new_password': NEW_PASSWORD,
        })

        assert response.status_code == 400
        assert response.json()['errors'][0]['field'] == 'current_password'

    @pytest.mark.asyncio
    async def test_weak_new_password(self, client, student, auth_headers):
        headers = await auth_headers(student)

        response = await client.post(f'{API}/auth/change-password', headers=headers, json={
            'current_password': STRONG_PASSWORD,
            'new_password': 'password123',
        })

        assert response.status_code == 400
        assert response.json()['errors'][0]['field'] == 'new_password'

    @pytest.mark.asyncio
    async def test_other_sessions_ended(self, client, student, auth_headers):
        current = await auth_headers(student)
        other = await auth_headers(student)

        response = await client.post(f'{API}/auth/change-password', headers=current, json={
            'current_password': STRONG_PASSWORD,
            'new_password': NEW_PASSWORD,
        })
        assert response.status_code == 200

        assert (await client.get(f'{API}/auth/me', headers=current)).status_code == 200
        assert (await client.get(f'{API}/auth/me', headers=other)).status_code == 401

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        response = await client.post(f'{API}/auth/change-password', json={
            'current_password': STRONG_PASSWORD,
            'new_password': NEW_PASSWORD,
        })

        assert response.status_code == 401
